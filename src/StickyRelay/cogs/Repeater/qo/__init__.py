from .CreateRepeaterQo import CreateRepeaterQo
from .UpdateRepeaterQo import UpdateRepeaterQo

__all__ = [
    "CreateRepeaterQo",
    "UpdateRepeaterQo",
]
