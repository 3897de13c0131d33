# Application Scheduling Package
from .engine import SchedulingEngine, adjust_easiness, is_due
from .queue_builder import QueueBuildResult, build_queue, build_queue_plan

__all__ = [
    "SchedulingEngine",
    "adjust_easiness",
    "is_due",
    "QueueBuildResult",
    "build_queue",
    "build_queue_plan",
]
