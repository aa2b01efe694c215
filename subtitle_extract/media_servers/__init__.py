"""
媒体服务器模块
从Jellyfin读取媒体库内容
"""

from .base import (
    BaseItemKind,
    BaseMediaServer,
    ItemsQuery,
    LibraryItem,
    MediaSource,
    MediaStream,
    MediaType,
    SourceType,
)
from .jellyfin import JellyfinMediaServer

__all__ = [
    'BaseItemKind',
    'BaseMediaServer',
    'ItemsQuery',
    'JellyfinMediaServer',
    'LibraryItem',
    'MediaSource',
    'MediaStream',
    'MediaType',
    'SourceType',
]
