"""
单个媒体项的字幕提取
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from .media_servers.base import LibraryItem
from .subtitle_encoders.base import BaseSubtitleEncoder

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    extracted: int = 0
    skipped: int = 0
    failed: int = 0
    outputs: List[str] = field(default_factory=list)

    def merge(self, other: "ExtractionResult"):
        self.extracted += other.extracted
        self.skipped += other.skipped
        self.failed += other.failed
        self.outputs.extend(other.outputs)


class SubtitlesExtractor:
    """
    遍历媒体项的所有媒体源及其内嵌字幕流，逐条交给提取后端处理。
    单条字幕流失败只记录警告，不影响其他字幕流；取消请求会立即向上抛出。
    """

    def __init__(self, subtitle_encoder: BaseSubtitleEncoder):
        self.encoder = subtitle_encoder

    async def run(self, item: LibraryItem, cancel_event: asyncio.Event) -> ExtractionResult:
        result = ExtractionResult()
        for media_source in item.media_sources:
            for stream in media_source.subtitle_streams:
                if stream.is_external or not self.encoder.can_extract(stream):
                    result.skipped += 1
                    continue

                if cancel_event.is_set():
                    raise asyncio.CancelledError()

                try:
                    output = await self.encoder.extract_subtitle(item, media_source, stream, cancel_event)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    result.failed += 1
                    logger.warning(
                        f"提取字幕失败: {media_source.path or item.path} (流 #{stream.index}, {stream.codec}): {e}"
                    )
                    continue

                if output is None:
                    result.skipped += 1
                else:
                    result.extracted += 1
                    result.outputs.append(output)

        if result.failed:
            logger.info(f"'{item.name}': 提取 {result.extracted} 条，跳过 {result.skipped} 条，失败 {result.failed} 条")
        return result
