# poolroute/core/scheduling/__init__.py
"""
Scheduling core: day-indexed job ordering and the edit/commit protocol.

- ``domain``: Job, statuses, route-day arithmetic in the dispatch zone
- ``ordering``: OrderingStore and the pure reorder algorithm (``plan_move``)
- ``pending``: JobPatch and PendingEditTracker (accumulated, uncommitted edits)
- ``commit``: BulkCommitter and RouteEditSession (operator-facing session)
- ``service``: RouteService, the persisting side of a bulk commit

Nothing in this package sends messages; change events are handed to
``poolroute.core.dispatch.emitter``.
"""
