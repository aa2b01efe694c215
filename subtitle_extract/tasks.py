"""
可以提交给 TaskManager 的独立任务
"""

import asyncio
import logging
from typing import Callable

from .media_servers.base import BaseMediaServer
from .subtitle_encoders.base import BaseSubtitleEncoder
from .subtitles_extractor import SubtitlesExtractor
from .task_manager import TaskSuccess

logger = logging.getLogger(__name__)


async def extract_item_subtitles_task(
    item_id: str,
    library_manager: BaseMediaServer,
    subtitle_encoder: BaseSubtitleEncoder,
    progress_callback: Callable,
    cancel_event: asyncio.Event,
):
    """提取单个媒体项的内嵌字幕 (媒体入库通知触发)"""
    await progress_callback(0, "正在获取媒体项信息...")
    item = await library_manager.get_item(item_id)
    if not item:
        raise TaskSuccess(f"媒体项 {item_id} 不存在或已被删除，跳过。")

    await progress_callback(10, f"正在提取 '{item.name}' 的字幕...")
    result = await SubtitlesExtractor(subtitle_encoder).run(item, cancel_event)
    await progress_callback(100, "字幕提取完成")
    raise TaskSuccess(
        f"'{item.name}': 提取 {result.extracted} 条字幕，跳过 {result.skipped} 条，失败 {result.failed} 条。"
    )
