import logging
import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

load_dotenv()
logger = logging.getLogger(__name__)

_DEFAULT_DATABASE = "data/database.db"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("true", "1", "t", "yes")


class DatabaseHandler:
    """
    重复播报记录所在的 SQLite 数据库。

    Bot 进程通过模块级的 initialize_db_handler / get_db_handler 共享同一个实例；
    存储层测试直接传入临时文件路径，各自持有独立的引擎。
    """

    def __init__(self, database_name: Optional[str] = None):
        self._database_name = database_name
        self._engine: Optional[AsyncEngine] = None

    def _database_path(self) -> str:
        path = self._database_name or os.getenv("DATABASE_NAME", _DEFAULT_DATABASE)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return path

    def initialize(self):
        """建立 aiosqlite 引擎。重复调用会被忽略。"""
        if self._engine is not None:
            logger.warning("数据库引擎已存在，忽略重复的初始化请求。")
            return

        path = self._database_path()
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{path}",
            echo=_env_flag("SQL_ECHO"),
            connect_args={"timeout": 15},
        )

        # 多个 Runner 会频繁写入统计与消息ID，WAL 模式下读写互不阻塞
        @event.listens_for(engine.sync_engine, "connect")
        def _configure_connection(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute("PRAGMA synchronous=NORMAL;")
            finally:
                cursor.close()

        self._engine = engine
        logger.info(f"重复播报数据库已就绪: {path}")

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("数据库引擎尚未建立，请先调用 initialize()。")
        return self._engine

    async def init_db(self):
        """按 SQLModel 元数据建表，已存在的表与索引保持不变。"""
        async with self._require_engine().begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    def get_session(self) -> AsyncSession:
        # 提交后仍需读取刚写入的记录来构造 DTO
        return AsyncSession(self._require_engine(), expire_on_commit=False)

    async def close(self):
        """释放连接池。"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        logger.info("重复播报数据库连接已关闭。")


# --- 进程内共享实例 ---

_shared_handler: Optional[DatabaseHandler] = None


def initialize_db_handler() -> DatabaseHandler:
    """创建 (仅第一次) 并返回进程内共享的 DatabaseHandler。"""
    global _shared_handler
    if _shared_handler is None:
        _shared_handler = DatabaseHandler()
        _shared_handler.initialize()
    return _shared_handler


def get_db_handler() -> DatabaseHandler:
    """返回共享的 DatabaseHandler；启动流程尚未创建它时抛出 RuntimeError。"""
    if _shared_handler is None:
        raise RuntimeError("共享的 DatabaseHandler 尚未创建，启动时应先调用 initialize_db_handler。")
    return _shared_handler
