from .RunnerState import RunnerState
from .TriggerMode import TriggerMode

__all__ = [
    "RunnerState",
    "TriggerMode",
]
