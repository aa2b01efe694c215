"""
字幕提取后端基类
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..media_servers.base import LibraryItem, MediaSource, MediaStream

# 编解码器 -> 文件扩展名
SUBTITLE_CODEC_TO_EXTENSION = {
    "subrip": "srt",
    "srt": "srt",
    "ass": "ass",
    "ssa": "ssa",
    "webvtt": "vtt",
    "vtt": "vtt",
    # mov_text 无法直接复制到独立文件，需要转换为 srt
    "mov_text": "srt",
    "hdmv_pgs_subtitle": "sup",
    "pgssub": "sup",
}

TEXT_SUBTITLE_CODECS = {"subrip", "srt", "ass", "ssa", "webvtt", "vtt", "mov_text", "text"}
PGS_SUBTITLE_CODECS = {"hdmv_pgs_subtitle", "pgssub"}
# DVD/DVB 位图字幕需要 OCR，不做提取
BITMAP_SUBTITLE_CODECS = {"dvd_subtitle", "dvdsub", "dvb_subtitle", "dvbsub"}


def get_subtitle_extension(codec: Optional[str]) -> str:
    return SUBTITLE_CODEC_TO_EXTENSION.get((codec or "").lower(), "srt")


def is_text_subtitle(stream: MediaStream) -> bool:
    if stream.codec in BITMAP_SUBTITLE_CODECS or stream.codec in PGS_SUBTITLE_CODECS:
        return False
    return stream.is_text_subtitle_stream or stream.codec in TEXT_SUBTITLE_CODECS


class BaseSubtitleEncoder(ABC):
    """
    字幕提取后端。
    extract_subtitle 负责把一条内嵌字幕流提取出来，
    返回生成的文件路径或请求的地址；目标已存在而被跳过时返回 None。
    """

    name: str = "base"

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def can_extract(self, stream: MediaStream) -> bool:
        """默认只处理内嵌的文本字幕"""
        return stream.is_subtitle and not stream.is_external and is_text_subtitle(stream)

    @abstractmethod
    async def extract_subtitle(
        self,
        item: LibraryItem,
        media_source: MediaSource,
        stream: MediaStream,
        cancel_event: asyncio.Event
    ) -> Optional[str]:
        pass

    async def close(self):
        pass
