from .BaseModel import BaseModel
from .GuildRepeater import GuildRepeater

__all__ = [
    "BaseModel",
    "GuildRepeater",
]
