"""Services for probing, state tracking, fan-out, dispatch and alerting."""
from .prober import ProberService, ProbeOutcome, FailureReason
from .hysteresis import HealthRecord, HealthState, AlertDecision, step
from .state_store import HealthStateStore
from .task_queue import TaskQueue, InMemoryTaskQueue, DatabaseTaskQueue
from .notifier import AlertNotifier
from .registry import MonitorRegistry
from .dispatcher import Dispatcher, TaskResult
from .scheduler import FanoutScheduler, SchedulerService

__all__ = [
    "ProberService",
    "ProbeOutcome",
    "FailureReason",
    "HealthRecord",
    "HealthState",
    "AlertDecision",
    "step",
    "HealthStateStore",
    "TaskQueue",
    "InMemoryTaskQueue",
    "DatabaseTaskQueue",
    "AlertNotifier",
    "MonitorRegistry",
    "Dispatcher",
    "TaskResult",
    "FanoutScheduler",
    "SchedulerService",
]
