from .ApiScheduler import APIScheduler
from .BaseDto import BaseDto
from .DatabaseHandler import DatabaseHandler
from .LoggingConfigurator import LoggingConfigurator
from .StickyRelayBot import StickyRelayBot
from .TaskScheduler import Clock, TaskScheduler
from .TimeUtils import TimeUtils
from .UnitOfWork import UnitOfWork

__all__ = [
    "APIScheduler",
    "BaseDto",
    "Clock",
    "DatabaseHandler",
    "LoggingConfigurator",
    "StickyRelayBot",
    "TaskScheduler",
    "TimeUtils",
    "UnitOfWork",
]
