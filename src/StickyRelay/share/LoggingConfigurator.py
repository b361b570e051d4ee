import logging
import os


class LoggingConfigurator:
    """
    一个用于集中配置项目日志记录器的类。
    """

    def __init__(self, rootLogLevel: str = "INFO"):
        """
        初始化配置器。
        :param rootLogLevel: 从 .env 文件读取的日志级别字符串。
        """
        self.logLevel = getattr(logging, rootLogLevel.upper(), logging.INFO)
        self.formatter = logging.Formatter("%(asctime)s:%(levelname)s:%(name)s: %(message)s")
        self.streamHandler = logging.StreamHandler()
        self.streamHandler.setFormatter(self.formatter)

    def configure(self):
        """
        应用所有日志配置。
        """
        self._configurePackageLogger()
        self._configureRepeaterLogger()
        self._configureSqlAlchemyLogger()
        self._configureDiscordLogger()
        logging.getLogger("StickyRelay").info("日志记录器配置完成。")

    def _configurePackageLogger(self):
        """配置本项目包级别的日志记录器，所有模块的 __name__ 日志都会汇总到这里。"""
        logger = logging.getLogger("StickyRelay")
        logger.setLevel(self.logLevel)
        if not logger.handlers:
            logger.addHandler(self.streamHandler)
        logger.propagate = False

    def _configureRepeaterLogger(self):
        """
        重复播报引擎每次触发都会输出 DEBUG 日志，可以通过 REPEATER_LOG_LEVEL 单独调整，
        未设置时沿用包级别。
        """
        log_level_str = os.getenv("REPEATER_LOG_LEVEL")
        if not log_level_str:
            return
        logging.getLogger("StickyRelay.cogs.Repeater").setLevel(
            getattr(logging, log_level_str.upper(), self.logLevel)
        )

    def _configureSqlAlchemyLogger(self):
        """配置 SQLAlchemy 的日志记录器，默认只输出 WARNING 及以上。"""
        log_level_str = os.getenv("SQLALCHEMY_LOG_LEVEL", "WARNING").upper()
        log_level = getattr(logging, log_level_str, logging.WARNING)

        sql_logger = logging.getLogger("sqlalchemy.engine")
        sql_logger.setLevel(log_level)
        if not sql_logger.handlers:
            sql_logger.addHandler(self.streamHandler)
        sql_logger.propagate = False

    def _configureDiscordLogger(self):
        """配置 discord.py 的日志记录器，以便捕获网关与 HTTP 层的错误。"""
        log_level_str = os.getenv("DISCORD_LOG_LEVEL", "INFO").upper()
        discord_logger = logging.getLogger("discord")
        discord_logger.setLevel(getattr(logging, log_level_str, logging.INFO))
        if not discord_logger.handlers:
            discord_logger.addHandler(self.streamHandler)
        discord_logger.propagate = False
