# poolroute/core/dispatch/__init__.py
"""
Dispatch layer: everything that leaves the system as a message.

- ``events``: ChangeEvent and its typed payload variants
- ``emitter``: classifies persisted job changes into change events
- ``notifications``: queued customer notifications and their payloads
- ``digest``: Digest, delivery log entry, windows and statuses
- ``templates``: plain-text rendering of digests and customer emails
- ``delivery``: send-and-log with a bounded timeout
- ``dispatcher``: technician digest passes (full plan + deltas)
- ``customer``: customer notification queue drain
- ``jobs``: wiring to the PostgreSQL adapters and the scheduler

Dispatch passes run under ``RUN_MODE=worker`` (or ``all``).
"""
