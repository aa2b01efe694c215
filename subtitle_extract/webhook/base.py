from abc import ABC, abstractmethod
import logging

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config_manager import ConfigManager
from ..localization import LocalizationManager
from ..media_servers.base import BaseMediaServer
from ..subtitle_encoders.base import BaseSubtitleEncoder
from ..task_manager import TaskManager
from ..tasks import extract_item_subtitles_task


class BaseWebhook(ABC):
    """所有 Webhook 处理器的抽象基类。"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        task_manager: TaskManager,
        config_manager: ConfigManager,
        library_manager: BaseMediaServer,
        subtitle_encoder: BaseSubtitleEncoder,
        localization_manager: LocalizationManager,
    ):
        self._session_factory = session_factory
        self.task_manager = task_manager
        self.config_manager = config_manager
        self.library_manager = library_manager
        self.subtitle_encoder = subtitle_encoder
        self.localization_manager = localization_manager
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def handle(self, request: Request, webhook_source: str):
        """处理传入的 Webhook 负载。"""
        raise NotImplementedError

    async def dispatch_task(self, item_id: str, item_name: str, webhook_source: str):
        """
        为新入库的媒体项提交一个字幕提取任务。
        需要同时开启 webhookEnabled 和 extractionDuringLibraryScan。
        """
        if not await self.config_manager.get_bool("webhookEnabled", True):
            self.logger.info("Webhook 功能已全局禁用，忽略请求。")
            return None
        if not await self.config_manager.get_bool("extractionDuringLibraryScan", False):
            self.logger.info(f"入库时提取字幕未开启，忽略 '{item_name}'。")
            return None

        title_template = self.localization_manager.get_localized_string("TaskExtractItemSubtitles")
        task_title = title_template.format(item_name)
        unique_key = f"extract-subtitles-{item_id}"
        task_coro = lambda cb, cancel_event: extract_item_subtitles_task(
            item_id=item_id,
            library_manager=self.library_manager,
            subtitle_encoder=self.subtitle_encoder,
            progress_callback=cb,
            cancel_event=cancel_event,
        )
        try:
            task_id, _ = await self.task_manager.submit_task(task_coro, task_title, unique_key=unique_key)
        except HTTPException as e:
            if e.status_code == status.HTTP_409_CONFLICT:
                self.logger.info(f"跳过创建任务 '{task_title}'，因为它已在队列中或正在运行。")
                return None
            raise
        self.logger.info(f"Webhook ({webhook_source}): 已为 '{item_name}' 创建字幕提取任务 (ID: {task_id})。")
        return task_id
