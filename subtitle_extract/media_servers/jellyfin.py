"""
Jellyfin媒体服务器实现
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .base import BaseMediaServer, ItemsQuery, LibraryItem, MediaSource, MediaStream, SourceType

# 分页查询时需要的额外字段，字幕流信息在 MediaSources -> MediaStreams 中
ITEM_FIELDS = "MediaSources,MediaStreams,Path"


class JellyfinMediaServer(BaseMediaServer):
    """Jellyfin媒体服务器"""

    async def test_connection(self) -> Dict[str, Any]:
        """测试连接"""
        try:
            data = await self._request('GET', '/System/Info')
            if data and 'ServerName' in data:
                return {
                    "ServerName": data.get('ServerName'),
                    "Version": data.get('Version'),
                    "Id": data.get('Id')
                }
            raise ValueError("无法获取服务器信息")
        except Exception as e:
            self.logger.error(f"Jellyfin连接测试失败: {e}")
            raise

    async def get_item_count(self, query: ItemsQuery) -> int:
        params = self._build_item_params(query)
        # 只需要总数，不需要任何条目
        params['StartIndex'] = 0
        params['Limit'] = 0
        params['EnableTotalRecordCount'] = 'true'
        data = await self._request('GET', '/Items', params=params)
        return int((data or {}).get('TotalRecordCount', 0))

    async def get_items(self, query: ItemsQuery) -> List[LibraryItem]:
        params = self._build_item_params(query)
        params['Fields'] = ITEM_FIELDS
        params['EnableTotalRecordCount'] = 'false'
        data = await self._request('GET', '/Items', params=params)
        return [self._parse_item(item) for item in (data or {}).get('Items', [])]

    async def get_item(self, item_id: str) -> Optional[LibraryItem]:
        """获取单个媒体项详情"""
        items = await self.get_items(ItemsQuery(item_ids=[item_id]))
        return items[0] if items else None

    @asynccontextmanager
    async def open_subtitle_stream(
        self,
        item_id: str,
        media_source_id: str,
        stream_index: int,
        fmt: str
    ) -> AsyncIterator[httpx.Response]:
        """
        请求某条字幕流。
        Jellyfin 在响应此请求时会把内嵌字幕提取到自己的字幕缓存中，
        之后网页播放器再请求同一字幕时就不需要实时转码。
        """
        endpoint = f'/Videos/{item_id}/{media_source_id}/Subtitles/{stream_index}/Stream.{fmt}'
        async with self._stream('GET', endpoint) as response:
            yield response

    def _build_item_params(self, query: ItemsQuery) -> Dict[str, Any]:
        """把 ItemsQuery 转换为 /Items 的查询参数"""
        params: Dict[str, Any] = {
            'Recursive': 'true' if query.recursive else 'false',
            'SortBy': 'SortName',
            'SortOrder': 'Ascending',
            'EnableImages': 'true' if query.enable_images else 'false',
            'EnableUserData': 'true' if query.enable_user_data else 'false',
        }
        if query.has_subtitles is not None:
            params['HasSubtitles'] = 'true' if query.has_subtitles else 'false'
        # 虚拟项 (例如缺失的剧集) 在 Jellyfin 中的位置类型为 Virtual
        if query.is_virtual_item is False:
            params['ExcludeLocationTypes'] = 'Virtual'
        elif query.is_virtual_item is True:
            params['LocationTypes'] = 'Virtual'
        if query.include_item_types:
            params['IncludeItemTypes'] = ','.join(t.value for t in query.include_item_types)
        if query.media_types:
            params['MediaTypes'] = ','.join(t.value for t in query.media_types)
        if query.item_ids:
            params['Ids'] = ','.join(query.item_ids)
        # /Items 只返回媒体库中的项目，频道和直播内容需要走其他接口
        for source_type in query.source_types:
            if source_type != SourceType.LIBRARY:
                raise ValueError(f"Jellyfin /Items 接口不支持的来源类型: {source_type.value}")
        if query.start_index:
            params['StartIndex'] = query.start_index
        if query.limit is not None:
            params['Limit'] = query.limit
        return params

    def _parse_item(self, data: Dict[str, Any]) -> LibraryItem:
        """解析媒体项数据"""
        item_id = data.get('Id')
        media_sources = [self._parse_media_source(s) for s in data.get('MediaSources') or []]
        # 部分版本在未返回 MediaSources 时会直接在媒体项上返回 MediaStreams
        if not media_sources and data.get('MediaStreams'):
            media_sources = [MediaSource(
                id=item_id,
                path=data.get('Path'),
                container=data.get('Container'),
                media_streams=[self._parse_media_stream(s) for s in data['MediaStreams']],
            )]

        return LibraryItem(
            id=item_id,
            name=data.get('Name'),
            item_type=data.get('Type'),
            path=data.get('Path'),
            media_sources=media_sources,
        )

    def _parse_media_source(self, data: Dict[str, Any]) -> MediaSource:
        return MediaSource(
            id=data.get('Id'),
            path=data.get('Path'),
            container=data.get('Container'),
            media_streams=[self._parse_media_stream(s) for s in data.get('MediaStreams') or []],
        )

    def _parse_media_stream(self, data: Dict[str, Any]) -> MediaStream:
        return MediaStream(
            index=data.get('Index', 0),
            type=data.get('Type', ''),
            codec=data.get('Codec'),
            language=data.get('Language'),
            title=data.get('Title'),
            is_external=data.get('IsExternal', False),
            is_forced=data.get('IsForced', False),
            is_default=data.get('IsDefault', False),
            is_hearing_impaired=data.get('IsHearingImpaired', False),
            is_text_subtitle_stream=data.get('IsTextSubtitleStream', False),
        )

    def _get_headers(self):
        """Jellyfin 推荐的认证头，同时保留兼容 Emby 的 Token 头"""
        return {
            'Authorization': f'MediaBrowser Token="{self.api_token}"',
            'X-Emby-Token': self.api_token,
            'Accept': 'application/json',
        }
