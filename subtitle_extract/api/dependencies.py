"""
API依赖注入函数
提供FastAPI端点所需的各种管理器和服务
"""

from fastapi import Request

from ..config_manager import ConfigManager
from ..media_servers.base import BaseMediaServer
from ..scheduler import SchedulerManager
from ..task_manager import TaskManager
from ..webhook_manager import WebhookManager


async def get_task_manager(request: Request) -> TaskManager:
    """依赖项：从应用状态获取任务管理器"""
    return request.app.state.task_manager


async def get_scheduler_manager(request: Request) -> SchedulerManager:
    """依赖项：从应用状态获取 Scheduler 管理器"""
    return request.app.state.scheduler_manager


async def get_webhook_manager(request: Request) -> WebhookManager:
    """依赖项：从应用状态获取 Webhook 管理器"""
    return request.app.state.webhook_manager


async def get_config_manager(request: Request) -> ConfigManager:
    """依赖项：从应用状态获取配置管理器"""
    return request.app.state.config_manager


async def get_library_manager(request: Request) -> BaseMediaServer:
    """依赖项：从应用状态获取媒体服务器客户端"""
    return request.app.state.library_manager
