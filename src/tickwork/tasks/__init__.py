"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, Checkpoint, StepOutcome, ...)
- task_store.py: SQLite task registry (submit / transition / cancel / list)
- checkpoint_store.py: SQLite checkpoint storage with versioned decoding
- idempotency.py: at-most-once effects per (task, step cursor)
- cost_ledger.py: per-quantum budget estimate
- task_scheduler.py: the per-quantum scheduler loop and caller facade
- host_loop.py: asyncio driver that ticks the scheduler
- task_api.py: small high-level helpers and built-in handlers
"""
