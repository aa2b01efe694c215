import logging
from pathlib import Path
from typing import Tuple, Union

from fastapi import FastAPI, Request
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .orm_models import Base

# 使用模块级日志记录器
logger = logging.getLogger(__name__)


def get_db_type() -> str:
    """获取数据库类型"""
    return settings.database.type.lower()


def _get_db_url() -> URL:
    """根据配置生成数据库连接URL。"""
    db_type = get_db_type()

    if db_type == "sqlite":
        db_path = settings.database.path or str(Path(settings.config_dir) / f"{settings.database.name}.db")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return URL.create(drivername="sqlite+aiosqlite", database=db_path)
    elif db_type == "mysql":
        drivername = "mysql+aiomysql"
        query = {"charset": "utf8mb4"}
    elif db_type == "postgresql":
        drivername = "postgresql+asyncpg"
        query = None
    else:
        raise ValueError(f"不支持的数据库类型: '{db_type}'。请使用 'sqlite'、'mysql' 或 'postgresql'。")

    return URL.create(
        drivername=drivername, username=settings.database.user, password=settings.database.password,
        host=settings.database.host, port=settings.database.port, database=settings.database.name, query=query,
    )


def create_engine_and_session_factory(db_url: Union[str, URL]) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """创建数据库引擎和会话工厂"""
    engine_args = {"echo": False}
    if not str(db_url).startswith("sqlite"):
        engine_args.update({
            "pool_recycle": 3600,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
        })
    engine = create_async_engine(db_url, **engine_args)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, session_factory


async def create_tables(engine: AsyncEngine):
    """创建所有缺失的表。"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db_tables(app: FastAPI):
    """创建数据库引擎、会话工厂和表，并存储在 app.state 中"""
    try:
        engine, session_factory = create_engine_and_session_factory(_get_db_url())
        await create_tables(engine)
    except OperationalError as e:
        logger.error("=" * 60)
        logger.error(f"数据库连接失败，应用无法启动 (类型: {get_db_type()}): {e}")
        logger.error("=" * 60)
        raise

    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    logger.info("数据库引擎和会话工厂创建成功。")


async def get_db_session(request: Request) -> AsyncSession:
    """依赖项：从应用状态获取数据库会话"""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


async def close_db_engine(app: FastAPI):
    """关闭数据库引擎"""
    if hasattr(app.state, "db_engine"):
        await app.state.db_engine.dispose()
        logger.info("数据库引擎已关闭。")
