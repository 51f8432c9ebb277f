"""
Task subsystem.

Components:
- task_models.py: data structures (Task, RecurrenceRule, FilterSpec, ...)
- task_store.py: SQLite-backed remote collection with live subscriptions
- priority.py: AI priority / suggestion / extraction on top of the retrying client
- recurrence.py: next due date of recurring tasks
- ordering.py: manual drag order (shift-insert)
- filters.py: filter + sort view, statistics
- sync.py: live subscription -> local collection, priority back-fill
- debounce.py: debounced durable writes for free-text edits
- deadline_monitor.py: polling loop for deadline reminders
- task_api.py: high-level actions used by connectors
"""
