# src/cara_tasks/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.persona import ERROR_MESSAGE, INITIAL_MESSAGE
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message
from ..llm.retry import InferenceFailure
from ..tasks.task_api import handle_chat_message

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


async def run_console_loop(state: AppState) -> None:
    """
    Interactive REPL. Input is read in a worker thread so the event loop keeps
    delivering snapshots, debounced writes and deadline checks while waiting.
    """
    logger.info("Console connector started (owner=%s).", state.owner_id)
    app_name = str(getattr(state.settings, "app_name", "cara"))
    _print_ts("[CONSOLE] Type your messages. Use /help for commands. Use /exit to quit.\n")
    _print_ts(f"<<< {app_name}: {INITIAL_MESSAGE}")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> You: ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            cmd_response = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is not None:
            _print_ts(cmd_response)
            continue

        try:
            reply = await handle_chat_message(state, user_input)
        except InferenceFailure as e:
            logger.info("Chat failed: %s", e)
            if e.retryable:
                _print_ts(f"[AI] {ERROR_MESSAGE}")
            else:
                _print_ts(f"[AI] {friendly_llm_error_message(e.__cause__ or e)}")
            continue
        except Exception:
            logger.exception("Console chat handler crashed.")
            _print_ts("Internal error while generating a reply.")
            continue

        _print_ts(f"<<< {app_name}: {reply.text}\n")

    logger.info("Console connector finished.")
