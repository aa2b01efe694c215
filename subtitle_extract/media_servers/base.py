"""
媒体服务器基类
定义统一的接口规范和媒体库查询所用的数据结构
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class BaseItemKind(str, Enum):
    EPISODE = "Episode"
    MOVIE = "Movie"


class MediaType(str, Enum):
    VIDEO = "Video"


class SourceType(str, Enum):
    LIBRARY = "Library"
    CHANNEL = "Channel"
    LIVE_TV = "LiveTV"


@dataclass
class ItemsQuery:
    """媒体库查询条件，start_index 会在分页时被修改"""
    recursive: bool = True
    has_subtitles: Optional[bool] = None
    is_virtual_item: Optional[bool] = None
    include_item_types: List[BaseItemKind] = field(default_factory=list)
    media_types: List[MediaType] = field(default_factory=list)
    source_types: List[SourceType] = field(default_factory=list)
    item_ids: List[str] = field(default_factory=list)
    start_index: int = 0
    limit: Optional[int] = None
    # 对应 DtoOptions(false)：不需要图片和用户数据
    enable_images: bool = False
    enable_user_data: bool = False


class MediaStream:
    """媒体流信息 (这里只关心字幕流)"""
    def __init__(
        self,
        index: int,
        type: str,
        codec: Optional[str] = None,
        language: Optional[str] = None,
        title: Optional[str] = None,
        is_external: bool = False,
        is_forced: bool = False,
        is_default: bool = False,
        is_hearing_impaired: bool = False,
        is_text_subtitle_stream: bool = False,
    ):
        self.index = index
        self.type = type  # Video, Audio, Subtitle...
        self.codec = (codec or "").lower()
        self.language = language
        self.title = title
        self.is_external = is_external
        self.is_forced = is_forced
        self.is_default = is_default
        self.is_hearing_impaired = is_hearing_impaired
        self.is_text_subtitle_stream = is_text_subtitle_stream

    @property
    def is_subtitle(self) -> bool:
        return self.type == "Subtitle"


class MediaSource:
    """媒体源信息，一个媒体项可以有多个版本"""
    def __init__(
        self,
        id: str,
        path: Optional[str] = None,
        container: Optional[str] = None,
        media_streams: Optional[List[MediaStream]] = None,
    ):
        self.id = id
        self.path = path
        self.container = container
        self.media_streams = media_streams or []

    @property
    def subtitle_streams(self) -> List[MediaStream]:
        return [s for s in self.media_streams if s.is_subtitle]


class LibraryItem:
    """媒体库中的视频项 (电影或剧集单集)"""
    def __init__(
        self,
        id: str,
        name: str,
        item_type: str,
        path: Optional[str] = None,
        media_sources: Optional[List[MediaSource]] = None,
    ):
        self.id = id
        self.name = name
        self.item_type = item_type
        self.path = path
        self.media_sources = media_sources or []

    def __repr__(self) -> str:
        return f"LibraryItem(id={self.id!r}, name={self.name!r}, type={self.item_type!r})"


class BaseMediaServer(ABC):
    """媒体服务器基类"""

    def __init__(self, url: str, api_token: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url.rstrip('/')
        self.api_token = api_token
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        """关闭HTTP客户端"""
        await self.client.aclose()

    @abstractmethod
    async def test_connection(self) -> Dict[str, Any]:
        """
        测试连接是否正常

        Returns:
            服务器信息字典,例如: {"ServerName": "My Server", "Version": "10.9.0"}
        """
        pass

    @abstractmethod
    async def get_item_count(self, query: ItemsQuery) -> int:
        """返回符合查询条件的媒体项总数"""
        pass

    @abstractmethod
    async def get_items(self, query: ItemsQuery) -> List[LibraryItem]:
        """按 query.start_index / query.limit 返回一页媒体项"""
        pass

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[LibraryItem]:
        """获取单个媒体项 (包含媒体源和媒体流)"""
        pass

    def _get_headers(self) -> Dict[str, str]:
        """获取请求头 (子类可覆盖)"""
        return {
            'X-Emby-Token': self.api_token,
            'Accept': 'application/json',
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Optional[Dict[str, Any]]:
        """
        发送HTTP请求

        Args:
            method: HTTP方法
            endpoint: API端点
            **kwargs: 其他请求参数
        """
        url = f"{self.url}{endpoint}"
        headers = self._get_headers()

        try:
            response = await self.client.request(
                method,
                url,
                headers=headers,
                **kwargs
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            self.logger.error(f"HTTP错误: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.RequestError as e:
            self.logger.error(f"请求错误: {e}")
            raise

    @asynccontextmanager
    async def _stream(self, method: str, endpoint: str, **kwargs) -> AsyncIterator[httpx.Response]:
        """以流的方式发送请求，调用方负责读取响应体"""
        url = f"{self.url}{endpoint}"
        try:
            async with self.client.stream(method, url, headers=self._get_headers(), **kwargs) as response:
                if response.is_error:
                    await response.aread()
                    response.raise_for_status()
                yield response
        except httpx.HTTPStatusError as e:
            self.logger.error(f"HTTP错误: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.RequestError as e:
            self.logger.error(f"请求错误: {e}")
            raise
