from abc import ABC, abstractmethod
from typing import Callable, List
import asyncio
import logging

from ..models import TaskTriggerInfo


class BaseJob(ABC):
    """
    所有定时任务的抽象基类。
    依赖项由 SchedulerManager 按构造函数的参数名注入。
    """
    # 每个子类都必须覆盖这些类属性
    job_type: str = "" # 任务的唯一标识符, e.g., "ExtractSubtitles"
    job_name: str = "" # 任务的默认显示名称
    description: str = "" # 任务的详细描述，用于前端显示
    category: str = "" # 任务分类，用于前端分组显示
    is_system_task: bool = False

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_default_triggers(self) -> List[TaskTriggerInfo]:
        """任务首次加载时自动创建的触发器，默认没有"""
        return []

    @abstractmethod
    async def run(self, progress_callback: Callable, cancel_event: asyncio.Event):
        """
        执行任务的核心逻辑。
        progress_callback: 一个回调函数，用于报告进度 (progress, description)。
        cancel_event: 被设置时任务应尽快抛出 asyncio.CancelledError。
        """
        raise NotImplementedError
