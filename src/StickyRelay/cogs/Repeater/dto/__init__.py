from .ForumTagConditionDto import ForumTagConditionDto
from .GatewayEventDto import MessageReceivedEvent, ThreadClosedEvent, ThreadCreatedEvent
from .RepeaterDto import RepeaterDto
from .RepeaterStatisticsDto import RepeaterStatisticsDto
from .TimeConditionDto import TimeConditionDto

__all__ = [
    "ForumTagConditionDto",
    "MessageReceivedEvent",
    "RepeaterDto",
    "RepeaterStatisticsDto",
    "ThreadClosedEvent",
    "ThreadCreatedEvent",
    "TimeConditionDto",
]
