import secrets
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

# 内部模块导入
from .api import api_router
from .config import settings
from .config_manager import ConfigManager
from .database import init_db_tables, close_db_engine
from .default_configs import get_default_configs
from .localization import LocalizationManager
from .log_manager import setup_logging
from .media_servers import JellyfinMediaServer
from .plugin import SubtitleExtractPlugin
from .scheduler import SchedulerManager
from .subtitle_encoders import create_subtitle_encoder
from .task_manager import TaskManager
from .webhook_manager import WebhookManager
from ._version import APP_VERSION

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器。
    - `yield` 之前的部分在应用启动时执行。
    - `yield` 之后的部分在应用关闭时执行。
    """
    # --- Startup Logic ---
    setup_logging()
    logger.info(f"Subtitle Extract 版本 {APP_VERSION} 正在启动... (环境: {settings.environment})")

    # init_db_tables 处理数据库创建、引擎和会话工厂的创建
    await init_db_tables(app)
    session_factory = app.state.db_session_factory

    app.state.config_manager = ConfigManager(session_factory)
    default_configs = get_default_configs()
    # API 密钥在首次启动时随机生成，之后沿用数据库中的值
    default_configs['webhookApiKey'] = (secrets.token_urlsafe(24), '用于 Webhook 回调的 API Key，在首次启动时自动生成。')
    default_configs['externalApiKey'] = (secrets.token_urlsafe(24), '用于外部控制API的 API Key，在首次启动时自动生成。')
    await app.state.config_manager.register_defaults(default_configs)

    app.state.plugin = SubtitleExtractPlugin.register()
    app.state.localization_manager = LocalizationManager(settings.ui_culture)

    if not settings.jellyfin.api_key:
        logger.warning("未配置 Jellyfin API Key (SUBEXTRACT_JELLYFIN__API_KEY)，访问媒体库时将会失败。")
    app.state.library_manager = JellyfinMediaServer(
        settings.jellyfin.url, settings.jellyfin.api_key, timeout=settings.jellyfin.timeout
    )
    app.state.subtitle_encoder = create_subtitle_encoder(settings, app.state.library_manager)
    logger.info(f"字幕提取后端: {app.state.subtitle_encoder.name}")

    app.state.task_manager = TaskManager(session_factory)
    await app.state.task_manager.start()

    dependencies = {
        "session_factory": session_factory,
        "task_manager": app.state.task_manager,
        "config_manager": app.state.config_manager,
        "library_manager": app.state.library_manager,
        "subtitle_encoder": app.state.subtitle_encoder,
        "localization_manager": app.state.localization_manager,
    }
    app.state.webhook_manager = WebhookManager(**dependencies)
    app.state.scheduler_manager = SchedulerManager(**dependencies)
    await app.state.scheduler_manager.start()

    logger.info("应用启动完成。")
    yield

    # --- Shutdown Logic ---
    if hasattr(app.state, "scheduler_manager"):
        await app.state.scheduler_manager.stop()
    if hasattr(app.state, "task_manager"):
        await app.state.task_manager.stop()
    if hasattr(app.state, "subtitle_encoder"):
        await app.state.subtitle_encoder.close()
    if hasattr(app.state, "library_manager"):
        await app.state.library_manager.close()
    await close_db_engine(app)

    logger.info("应用已完全关闭")


app = FastAPI(
    title="Subtitle Extract Control API",
    description="用于外部自动化和集成的API。所有端点都需要通过 `?api_key=` 进行鉴权。",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")


# 这样就可以通过 `python -m subtitle_extract.main` 来运行
def run():
    uvicorn.run(
        "subtitle_extract.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"  # 开发环境启用自动重载
    )


if __name__ == "__main__":
    run()
