import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from subtitle_extract.database import create_engine_and_session_factory, create_tables
from subtitle_extract.media_servers.base import BaseMediaServer, ItemsQuery, LibraryItem, MediaSource, MediaStream
from subtitle_extract.plugin import SubtitleExtractPlugin
from subtitle_extract.subtitle_encoders.base import BaseSubtitleEncoder


def make_stream(index: int, codec: str = "subrip", language: Optional[str] = "eng", **kwargs) -> MediaStream:
    kwargs.setdefault("is_text_subtitle_stream", codec in {"subrip", "ass", "ssa", "webvtt", "mov_text"})
    return MediaStream(index=index, type="Subtitle", codec=codec, language=language, **kwargs)


def make_item(item_id: str, streams: Optional[List[MediaStream]] = None, path: Optional[str] = None) -> LibraryItem:
    path = path or f"/media/movies/{item_id}.mkv"
    if streams is None:
        streams = [make_stream(2)]
    video = MediaStream(index=0, type="Video", codec="h264")
    source = MediaSource(id=f"src-{item_id}", path=path, container="mkv", media_streams=[video, *streams])
    return LibraryItem(id=item_id, name=f"Item {item_id}", item_type="Movie", path=path, media_sources=[source])


class FakeLibrary(BaseMediaServer):
    """内存中的媒体库，记录收到的查询"""

    def __init__(self, items: List[LibraryItem], count: Optional[int] = None):
        self.items = items
        self.count = len(items) if count is None else count
        self.count_queries: List[ItemsQuery] = []
        self.page_requests: List[tuple] = []

    async def test_connection(self) -> Dict:
        return {"ServerName": "Fake", "Version": "10.9.0", "Id": "fake"}

    async def get_item_count(self, query: ItemsQuery) -> int:
        self.count_queries.append(query)
        return self.count

    async def get_items(self, query: ItemsQuery) -> List[LibraryItem]:
        self.page_requests.append((query.start_index, query.limit))
        return self.items[query.start_index:query.start_index + query.limit]

    async def get_item(self, item_id: str) -> Optional[LibraryItem]:
        return next((i for i in self.items if i.id == item_id), None)

    async def close(self):
        pass


class FakeEncoder(BaseSubtitleEncoder):
    name = "fake"

    def __init__(self, fail_items=(), delay: float = 0):
        super().__init__()
        self.calls: List[tuple] = []
        self.fail_items = set(fail_items)
        self.delay = delay

    async def extract_subtitle(self, item, media_source, stream, cancel_event):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((item.id, stream.index))
        if item.id in self.fail_items:
            raise RuntimeError("extraction failed")
        return f"/out/{item.id}.{stream.index}.srt"


class ProgressRecorder:
    def __init__(self):
        self.reports: List[tuple] = []

    async def __call__(self, progress, description, status=None):
        self.reports.append((progress, description))

    @property
    def values(self):
        return [p for p, _ in self.reports]


@pytest.fixture(autouse=True)
def registered_plugin():
    plugin = SubtitleExtractPlugin.register()
    yield plugin
    SubtitleExtractPlugin._current = None


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


async def open_db(db_url: str):
    """在当前事件循环中创建引擎和表，返回 (engine, session_factory)"""
    engine, session_factory = create_engine_and_session_factory(db_url)
    await create_tables(engine)
    return engine, session_factory
