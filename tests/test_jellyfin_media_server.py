import asyncio

import httpx
import pytest

from subtitle_extract.jobs.extract_subtitles import ExtractSubtitlesJob
from subtitle_extract.localization import LocalizationManager
from subtitle_extract.media_servers import ItemsQuery, JellyfinMediaServer, SourceType

from tests.conftest import FakeEncoder

ITEM = {
    "Id": "abc",
    "Name": "Some Movie",
    "Type": "Movie",
    "Path": "/media/movies/Some Movie.mkv",
    "MediaSources": [{
        "Id": "src1",
        "Path": "/media/movies/Some Movie.mkv",
        "Container": "mkv",
        "MediaStreams": [
            {"Index": 0, "Type": "Video", "Codec": "h264"},
            {"Index": 2, "Type": "Subtitle", "Codec": "SUBRIP", "Language": "eng",
             "IsTextSubtitleStream": True, "IsForced": True},
            {"Index": 3, "Type": "Subtitle", "Codec": "PGSSUB", "Language": "jpn"},
        ],
    }],
}


def make_server(handler) -> JellyfinMediaServer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JellyfinMediaServer("http://jellyfin:8096/", "secret", client=client)


def test_get_item_count_requests_only_total():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, json={"Items": [], "TotalRecordCount": 42})

    server = make_server(handler)
    query = ExtractSubtitlesJob(server, FakeEncoder(), LocalizationManager()).build_query()

    assert asyncio.run(server.get_item_count(query)) == 42

    params = requests[0].url.params
    assert requests[0].url.path == "/Items"
    assert params["Limit"] == "0"
    assert params["EnableTotalRecordCount"] == "true"
    assert params["Recursive"] == "true"
    assert params["HasSubtitles"] == "true"
    assert params["ExcludeLocationTypes"] == "Virtual"
    assert params["IncludeItemTypes"] == "Episode,Movie"
    assert params["MediaTypes"] == "Video"
    assert params["EnableImages"] == "false"
    assert params["EnableUserData"] == "false"
    assert "SourceTypes" not in params


def test_get_items_sends_paging_and_parses_streams():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, json={"Items": [ITEM]})

    server = make_server(handler)
    items = asyncio.run(server.get_items(ItemsQuery(has_subtitles=True, start_index=200, limit=100)))

    params = requests[0].url.params
    assert params["StartIndex"] == "200"
    assert params["Limit"] == "100"
    assert params["Fields"] == "MediaSources,MediaStreams,Path"
    assert params["SortBy"] == "SortName"
    assert requests[0].headers["Authorization"] == 'MediaBrowser Token="secret"'
    assert requests[0].headers["X-Emby-Token"] == "secret"

    item = items[0]
    assert item.id == "abc"
    assert item.item_type == "Movie"
    source = item.media_sources[0]
    assert source.id == "src1"
    subtitles = source.subtitle_streams
    assert [s.index for s in subtitles] == [2, 3]
    assert subtitles[0].codec == "subrip"
    assert subtitles[0].is_forced is True
    assert subtitles[1].codec == "pgssub"


def test_item_without_media_sources_uses_item_streams():
    item = {"Id": "x", "Name": "X", "Type": "Episode", "Path": "/x.mkv",
            "MediaStreams": [{"Index": 1, "Type": "Subtitle", "Codec": "ass"}]}
    server = make_server(lambda request: httpx.Response(200, json={"Items": [item]}))

    parsed = asyncio.run(server.get_item("x"))

    assert parsed.media_sources[0].id == "x"
    assert parsed.media_sources[0].subtitle_streams[0].codec == "ass"


def test_get_item_returns_none_when_missing():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, json={"Items": []})

    server = make_server(handler)
    assert asyncio.run(server.get_item("missing")) is None
    assert requests[0].url.params["Ids"] == "missing"


def test_non_library_source_type_is_rejected():
    server = make_server(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ValueError):
        asyncio.run(server.get_item_count(ItemsQuery(source_types=[SourceType.CHANNEL])))


def test_http_error_is_raised():
    server = make_server(lambda request: httpx.Response(401, text="unauthorized"))
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(server.get_items(ItemsQuery(limit=1)))


def test_connection_info():
    def handler(request: httpx.Request):
        assert request.url.path == "/System/Info"
        return httpx.Response(200, json={"ServerName": "Home", "Version": "10.9.11", "Id": "srv"})

    info = asyncio.run(make_server(handler).test_connection())
    assert info == {"ServerName": "Home", "Version": "10.9.11", "Id": "srv"}


def test_open_subtitle_stream_requests_subtitle_endpoint():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, content=b"1\n00:00:01,000 --> 00:00:02,000\nHi\n")

    server = make_server(handler)

    async def main():
        async with server.open_subtitle_stream("abc", "src1", 2, "srt") as response:
            return await response.aread()

    body = asyncio.run(main())
    assert body.startswith(b"1\n")
    assert requests[0].url.path == "/Videos/abc/src1/Subtitles/2/Stream.srt"
