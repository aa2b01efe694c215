"""
远程提取: 请求 Jellyfin 的字幕流接口，由 Jellyfin 自己提取并缓存字幕
"""

import asyncio
from typing import Optional

from ..media_servers.base import LibraryItem, MediaSource, MediaStream
from ..media_servers.jellyfin import JellyfinMediaServer
from .base import BaseSubtitleEncoder, get_subtitle_extension


class JellyfinSubtitleEncoder(BaseSubtitleEncoder):
    name = "remote"

    def __init__(self, media_server: JellyfinMediaServer):
        super().__init__()
        self.media_server = media_server

    async def extract_subtitle(
        self,
        item: LibraryItem,
        media_source: MediaSource,
        stream: MediaStream,
        cancel_event: asyncio.Event
    ) -> Optional[str]:
        fmt = get_subtitle_extension(stream.codec)
        received = 0
        async with self.media_server.open_subtitle_stream(item.id, media_source.id, stream.index, fmt) as response:
            async for chunk in response.aiter_bytes():
                if cancel_event.is_set():
                    raise asyncio.CancelledError()
                received += len(chunk)
            url = str(response.url)

        self.logger.debug(f"已提取 '{item.name}' 的字幕流 #{stream.index} ({stream.codec} -> {fmt}, {received} 字节)")
        return url
