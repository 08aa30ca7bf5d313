"""Live database queries: change tracking, value observations, delivery schedulers."""

from shared.observation.observation import ObservationHandle, ObservationState, QueryError, ValueObservation
from shared.observation.scheduler import AsyncioScheduler, ImmediateScheduler, Scheduler
from shared.observation.tracker import ChangeTracker, Commit, DatabaseRegion

__all__ = [
    "AsyncioScheduler",
    "ChangeTracker",
    "Commit",
    "DatabaseRegion",
    "ImmediateScheduler",
    "ObservationHandle",
    "ObservationState",
    "QueryError",
    "Scheduler",
    "ValueObservation",
]
