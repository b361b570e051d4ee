import logging

from StickyRelay.cogs.Repeater.ConditionEvaluator import ConditionEvaluator
from StickyRelay.cogs.Repeater.listeners.RepeaterListener import RepeaterListener
from StickyRelay.cogs.Repeater.MessagingTransport import DiscordMessagingTransport
from StickyRelay.cogs.Repeater.RepeaterEventRouter import RepeaterEventRouter
from StickyRelay.cogs.Repeater.RepeaterLogic import RepeaterLogic
from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry
from StickyRelay.cogs.Repeater.RepeaterSettings import RepeaterSettings
from StickyRelay.cogs.Repeater.RepeaterStore import SqlRepeaterStore
from StickyRelay.share.StickyRelayBot import StickyRelayBot

logger = logging.getLogger(__name__)


async def setup(bot: StickyRelayBot):
    """
    组装重复播报模块的协作者，并加载事件监听 Cog。
    """
    settings = RepeaterSettings.from_config(bot.config)
    registry = RepeaterRegistry(
        transport=DiscordMessagingTransport(bot, priority=settings.send_priority),
        store=SqlRepeaterStore(bot.db_handler),
        scheduler=bot.task_scheduler,
        evaluator=ConditionEvaluator(
            default_timezone=bot.config.get("timezone", "UTC"),
            guild_timezones=bot.config.get("guild_timezones"),
        ),
        settings=settings,
    )
    router = RepeaterEventRouter(registry)

    bot.repeater_registry = registry
    bot.repeater_logic = RepeaterLogic(registry)

    await bot.add_cog(RepeaterListener(bot, registry, router))
    logger.info("成功加载 Repeater 模块")
