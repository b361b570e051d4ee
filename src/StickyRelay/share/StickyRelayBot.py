from typing import TYPE_CHECKING, Any, Dict

from discord.ext import commands

from StickyRelay.share.ApiScheduler import APIScheduler
from StickyRelay.share.DatabaseHandler import DatabaseHandler
from StickyRelay.share.TaskScheduler import TaskScheduler

if TYPE_CHECKING:
    from StickyRelay.cogs.Repeater.RepeaterLogic import RepeaterLogic
    from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry


class StickyRelayBot(commands.Bot):
    """
    自定义 Bot 基类。
    为项目中挂在 Bot 上的共享对象（API 调度器、数据库句柄、重复播报注册表等）
    提供集中的类型声明。
    """

    api_scheduler: APIScheduler
    db_handler: DatabaseHandler
    config: Dict[str, Any]
    task_scheduler: TaskScheduler
    repeater_registry: "RepeaterRegistry"
    repeater_logic: "RepeaterLogic"
