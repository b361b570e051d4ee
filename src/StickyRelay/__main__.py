import json
import logging
import os
import sys

import aiorun
import discord
from dotenv import load_dotenv

from StickyRelay.cogs.Repeater.RepeaterSettings import RepeaterSettings
from StickyRelay.share.ApiScheduler import APIScheduler
from StickyRelay.share.DatabaseHandler import get_db_handler, initialize_db_handler
from StickyRelay.share.LoggingConfigurator import LoggingConfigurator
from StickyRelay.share.StickyRelayBot import StickyRelayBot
from StickyRelay.share.TaskScheduler import TaskScheduler

# --- .env 和 日志配置 ---
load_dotenv()
log_level = os.getenv("LOG_LEVEL", "INFO")
configurator = LoggingConfigurator(rootLogLevel=log_level)
configurator.configure()

logger = logging.getLogger("StickyRelay")
# --- 日志配置结束 ---


if sys.platform != "win32":
    try:
        import uvloop

        uvloop.install()
        logger.info("已成功启用 uvloop 作为 asyncio 事件循环")
    except ImportError:
        logger.warning("尝试启用 uvloop 失败，将使用默认事件循环")


bot = None
db_handler = None


async def shutdown(loop):
    """专门用于清理资源的关闭回调函数"""
    global bot, db_handler
    logger.info("收到关闭信号，正在关闭 Bot 资源...")
    if bot:
        if getattr(bot, "repeater_registry", None):
            await bot.repeater_registry.shutdown()
        bot.task_scheduler.cancel_all()
        await bot.close()

    if db_handler:
        await db_handler.close()

    if bot and bot.api_scheduler:
        await bot.api_scheduler.stop()

    logger.info("所有资源已清理，程序退出。")


def load_config(path: str = "config.json") -> dict:
    if not os.path.exists(path):
        logger.warning(f"未找到 {path}，将使用默认配置。")
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def main_async():
    """主函数，设置并运行 Bot"""
    global bot, db_handler
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True

    config = load_config()
    settings = RepeaterSettings.from_config(config)

    proxy = config.get("proxy") or None
    bot = StickyRelayBot(command_prefix="!", intents=intents, proxy=proxy)

    bot.api_scheduler = APIScheduler(concurrent_requests=settings.api_concurrency)
    bot.task_scheduler = TaskScheduler()
    bot.db_handler = None  # type: ignore
    bot.config = config

    @bot.event
    async def setup_hook():
        global db_handler
        assert bot is not None
        import StickyRelay.models  # noqa: F401

        bot.api_scheduler.start()

        initialize_db_handler()
        db_handler = get_db_handler()
        bot.db_handler = db_handler
        logger.info("DatabaseHandler 初始化并分配给 Bot。")

        logger.info("正在检查数据库表...")
        try:
            await bot.db_handler.init_db()
            logger.info("数据库表处理成功。")
        except Exception as e:
            logger.exception(f"数据库表处理失败: {e}")
            return

        logger.info("开始加载 Repeater 模块...")
        from StickyRelay.cogs import Repeater

        try:
            await Repeater.setup(bot)
        except Exception as e:
            logger.exception(f"加载 Repeater 模块时发生错误: {e}")

    @bot.event
    async def on_ready():
        assert bot is not None
        logger.info(f"以 {bot.user} 的身份登录")
        logger.info("------ Bot 已准备就绪 ------")

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "YOUR_BOT_TOKEN_HERE":
        logger.error("错误: 未找到或未配置 DISCORD_TOKEN。")
        return

    await bot.start(token)


def main():
    """主入口函数"""
    aiorun.run(main_async(), shutdown_callback=shutdown, stop_on_unhandled_errors=True)


if __name__ == "__main__":
    main()
