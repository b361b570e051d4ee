from .RepeaterListener import RepeaterListener

__all__ = [
    "RepeaterListener",
]
