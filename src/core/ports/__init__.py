# SitePulse core ports (Protocol interfaces); no implementations here

from src.core.ports.jobs import TaskDispatcherPort, TaskResult, TaskStatus
from src.core.ports.time import TimePort

__all__ = [
    "TaskDispatcherPort",
    "TaskResult",
    "TaskStatus",
    "TimePort",
]
