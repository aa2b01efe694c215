import asyncio
from typing import Callable, List, Optional

from ..localization import LocalizationManager
from ..media_servers.base import BaseItemKind, BaseMediaServer, ItemsQuery, MediaType, SourceType
from ..models import TaskTriggerInfo
from ..plugin import SubtitleExtractPlugin
from ..subtitle_encoders.base import BaseSubtitleEncoder
from ..subtitles_extractor import ExtractionResult, SubtitlesExtractor
from ..task_manager import TaskSuccess
from .base import BaseJob

QUERY_PAGE_LIMIT = 100


class ExtractSubtitlesJob(BaseJob):
    """
    扫描媒体库中带有内嵌字幕的电影和剧集，逐个提取字幕。
    总数只在开始前查询一次，作为进度的分母。
    """
    job_type = "ExtractSubtitles"

    def __init__(
        self,
        library_manager: BaseMediaServer,
        subtitle_encoder: BaseSubtitleEncoder,
        localization_manager: LocalizationManager,
        plugin: Optional[SubtitleExtractPlugin] = None,
    ):
        super().__init__()
        self.library_manager = library_manager
        self.localization_manager = localization_manager
        self.extractor = SubtitlesExtractor(subtitle_encoder)
        self._plugin = plugin

    @property
    def plugin(self) -> SubtitleExtractPlugin:
        return self._plugin or SubtitleExtractPlugin.current()

    @property
    def job_name(self) -> str:
        return self.plugin.name

    @property
    def description(self) -> str:
        return self.plugin.description

    @property
    def category(self) -> str:
        return self.localization_manager.get_localized_string("TasksLibraryCategory")

    def get_default_triggers(self) -> List[TaskTriggerInfo]:
        return []

    def build_query(self) -> ItemsQuery:
        return ItemsQuery(
            recursive=True,
            has_subtitles=True,
            is_virtual_item=False,
            include_item_types=[BaseItemKind.EPISODE, BaseItemKind.MOVIE],
            media_types=[MediaType.VIDEO],
            source_types=[SourceType.LIBRARY],
            limit=QUERY_PAGE_LIMIT,
            enable_images=False,
            enable_user_data=False,
        )

    async def run(self, progress_callback: Callable, cancel_event: asyncio.Event):
        query = self.build_query()
        number_of_videos = await self.library_manager.get_item_count(query)
        self.logger.info(f"找到 {number_of_videos} 个带有字幕的视频。")

        completed = 0
        summary = ExtractionResult()
        while query.start_index < number_of_videos:
            videos = await self.library_manager.get_items(query)
            for video in videos:
                if cancel_event.is_set():
                    raise asyncio.CancelledError()

                summary.merge(await self.extractor.run(video, cancel_event))

                completed += 1
                # 媒体库在运行中增长时该值可能超过 100，由任务管理器负责截断
                progress = 100.0 * completed / number_of_videos
                await progress_callback(progress, f"({completed}/{number_of_videos}) {video.name}")

            query.start_index += QUERY_PAGE_LIMIT

        await progress_callback(100, "字幕提取完成")
        raise TaskSuccess(
            f"处理了 {completed} 个视频: 提取 {summary.extracted} 条字幕，"
            f"跳过 {summary.skipped} 条，失败 {summary.failed} 条。"
        )
