import asyncio
from pathlib import Path

import httpx
import pytest

from subtitle_extract.config import Settings
from subtitle_extract.exceptions import FFmpegError, PathMappingError
from subtitle_extract.media_servers import JellyfinMediaServer
from subtitle_extract.subtitle_encoders import (
    FfmpegSubtitleEncoder,
    JellyfinSubtitleEncoder,
    create_subtitle_encoder,
    get_subtitle_extension,
)
from subtitle_extract.subtitle_encoders import ffmpeg as ffmpeg_module

from tests.conftest import make_item, make_stream


def test_codec_extension_map():
    assert get_subtitle_extension("subrip") == "srt"
    assert get_subtitle_extension("ASS") == "ass"
    assert get_subtitle_extension("webvtt") == "vtt"
    assert get_subtitle_extension("mov_text") == "srt"
    assert get_subtitle_extension("hdmv_pgs_subtitle") == "sup"
    assert get_subtitle_extension("something_new") == "srt"


# --- remote ---

def test_remote_encoder_requests_subtitle_stream():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, content=b"[Script Info]\n")

    server = JellyfinMediaServer("http://jellyfin:8096", "secret", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    encoder = JellyfinSubtitleEncoder(server)
    item = make_item("abc", streams=[make_stream(3, "ass")])
    source = item.media_sources[0]

    result = asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    assert requests[0].url.path == "/Videos/abc/src-abc/Subtitles/3/Stream.ass"
    assert result.endswith("/Stream.ass")


def test_remote_encoder_only_handles_embedded_text_streams():
    encoder = JellyfinSubtitleEncoder(None)
    assert encoder.can_extract(make_stream(2, "subrip"))
    assert not encoder.can_extract(make_stream(2, "subrip", is_external=True))
    assert not encoder.can_extract(make_stream(3, "hdmv_pgs_subtitle"))
    assert not encoder.can_extract(make_stream(4, "dvd_subtitle"))


def test_remote_encoder_stops_when_cancelled():
    server = JellyfinMediaServer(
        "http://jellyfin:8096", "secret",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"data")))
    )
    item = make_item("abc")
    source = item.media_sources[0]
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(JellyfinSubtitleEncoder(server).extract_subtitle(item, source, source.subtitle_streams[0], cancel_event))


# --- ffmpeg ---

class FakeProcess:
    def __init__(self, output_path: Path, returncode: int = 0, stderr: bytes = b"", hang: bool = False):
        self.output_path = output_path
        self._returncode = returncode
        self.returncode = None
        self.stderr = stderr
        self.hang = hang
        self.killed = False

    async def communicate(self):
        self.output_path.write_text("partial")
        if self.hang:
            await asyncio.sleep(10)
        self.returncode = self._returncode
        return b"", self.stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def video(tmp_path: Path) -> Path:
    path = tmp_path / "local" / "movies" / "Film (2020).mkv"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x1a\x45\xdf\xa3")
    return path


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    state = {"commands": [], "process": None, "options": {}}

    async def fake_exec(*cmd, **kwargs):
        state["commands"].append(list(cmd))
        state["process"] = FakeProcess(Path(cmd[-1]), **state["options"])
        return state["process"]

    monkeypatch.setattr(ffmpeg_module.asyncio, "create_subprocess_exec", fake_exec)
    return state


def test_path_mapping_prefers_longest_prefix():
    encoder = FfmpegSubtitleEncoder(path_mappings=["/media=/mnt/a", "/media/movies=/mnt/b"])
    assert encoder.map_path("/media/movies/x.mkv") == "/mnt/b/x.mkv"
    assert encoder.map_path("/media/tv/x.mkv") == "/mnt/a/tv/x.mkv"
    assert encoder.map_path("/mediafoo/x.mkv") == "/mediafoo/x.mkv"


def test_invalid_path_mapping():
    with pytest.raises(ValueError):
        FfmpegSubtitleEncoder(path_mappings=["no-separator"])


def test_sidecar_names_and_duplicates():
    encoder = FfmpegSubtitleEncoder()
    item = make_item("a", streams=[
        make_stream(2, "subrip", language="eng"),
        make_stream(3, "subrip", language="eng"),
        make_stream(4, "ass", language=None, is_forced=True),
        make_stream(5, "subrip", language="eng", is_hearing_impaired=True),
    ])
    source = item.media_sources[0]
    streams = source.subtitle_streams
    names = [encoder.build_output_path("/v/Film.mkv", source, s).name for s in streams]

    assert names == [
        "Film.eng.2.srt",
        "Film.eng.3.srt",
        "Film.und.forced.ass",
        "Film.eng.sdh.srt",
    ]


def test_output_dir_and_codec_argument():
    encoder = FfmpegSubtitleEncoder(ffmpeg_path="/usr/bin/ffmpeg", output_dir="/subs")
    item = make_item("a", streams=[make_stream(2, "mov_text"), make_stream(3, "ass")])
    source = item.media_sources[0]
    mov_text, ass = source.subtitle_streams

    out = encoder.build_output_path("/v/Film.mp4", source, mov_text)
    assert out == Path("/subs/Film.eng.srt")
    assert encoder.build_command("/v/Film.mp4", mov_text, out) == [
        "/usr/bin/ffmpeg", "-nostdin", "-hide_banner", "-loglevel", "error", "-y",
        "-i", "/v/Film.mp4", "-map", "0:2", "-c:s", "srt", str(out),
    ]
    assert "copy" in encoder.build_command("/v/Film.mp4", ass, out)


def test_image_subtitles_are_opt_in():
    pgs = make_stream(3, "hdmv_pgs_subtitle")
    assert not FfmpegSubtitleEncoder().can_extract(pgs)
    assert FfmpegSubtitleEncoder(extract_image_subtitles=True).can_extract(pgs)
    assert not FfmpegSubtitleEncoder(extract_image_subtitles=True).can_extract(make_stream(4, "dvb_subtitle"))


def test_ffmpeg_extracts_next_to_mapped_video(video, fake_ffmpeg):
    local_root = video.parent.parent
    encoder = FfmpegSubtitleEncoder(ffmpeg_path="ffmpeg", path_mappings=[f"/media={local_root}"])
    item = make_item("a", path="/media/movies/Film (2020).mkv")
    source = item.media_sources[0]

    result = asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    expected = video.parent / "Film (2020).eng.srt"
    assert result == str(expected)
    assert expected.exists()
    cmd = fake_ffmpeg["commands"][0]
    assert cmd[cmd.index("-i") + 1] == str(video)
    assert cmd[cmd.index("-map") + 1] == "0:2"
    assert cmd[-1] == str(video.parent / "Film (2020).eng.partial.srt")
    assert not Path(cmd[-1]).exists()


def test_ffmpeg_skips_existing_output(video, fake_ffmpeg):
    (video.parent / "Film (2020).eng.srt").write_text("existing")
    encoder = FfmpegSubtitleEncoder()
    item = make_item("a", path=str(video))
    source = item.media_sources[0]

    result = asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    assert result is None
    assert fake_ffmpeg["commands"] == []


def test_ffmpeg_failure_raises_and_removes_output(video, fake_ffmpeg):
    fake_ffmpeg["options"] = {"returncode": 1, "stderr": b"Invalid data found"}
    encoder = FfmpegSubtitleEncoder()
    item = make_item("a", path=str(video))
    source = item.media_sources[0]

    with pytest.raises(FFmpegError) as exc_info:
        asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    assert exc_info.value.exit_code == 1
    assert "Invalid data found" in exc_info.value.output
    assert not (video.parent / "Film (2020).eng.srt").exists()
    assert not (video.parent / "Film (2020).eng.partial.srt").exists()


def test_overwrite_replaces_existing_sidecar(video, fake_ffmpeg):
    existing = video.parent / "Film (2020).eng.srt"
    existing.write_text("old subs")
    encoder = FfmpegSubtitleEncoder(overwrite=True)
    item = make_item("a", path=str(video))
    source = item.media_sources[0]

    result = asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    assert result == str(existing)
    assert existing.read_text() == "partial"


def test_failed_overwrite_keeps_existing_sidecar(video, fake_ffmpeg):
    existing = video.parent / "Film (2020).eng.srt"
    existing.write_text("good subs")
    fake_ffmpeg["options"] = {"returncode": 1, "stderr": b"Invalid data found"}
    encoder = FfmpegSubtitleEncoder(overwrite=True)
    item = make_item("a", path=str(video))
    source = item.media_sources[0]

    with pytest.raises(FFmpegError):
        asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))

    assert existing.read_text() == "good subs"
    assert not (video.parent / "Film (2020).eng.partial.srt").exists()


def test_ffmpeg_cancellation_kills_process(video, fake_ffmpeg):
    fake_ffmpeg["options"] = {"hang": True}
    encoder = FfmpegSubtitleEncoder()
    item = make_item("a", path=str(video))
    source = item.media_sources[0]

    async def main():
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)
        await encoder.extract_subtitle(item, source, source.subtitle_streams[0], cancel_event)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(main())

    assert fake_ffmpeg["process"].killed
    assert not (video.parent / "Film (2020).eng.srt").exists()
    assert not (video.parent / "Film (2020).eng.partial.srt").exists()


def test_missing_media_file_raises_path_mapping_error(tmp_path, fake_ffmpeg):
    encoder = FfmpegSubtitleEncoder()
    item = make_item("a", path=str(tmp_path / "nope.mkv"))
    source = item.media_sources[0]

    with pytest.raises(PathMappingError):
        asyncio.run(encoder.extract_subtitle(item, source, source.subtitle_streams[0], asyncio.Event()))


def test_encoder_factory():
    server = JellyfinMediaServer("http://jellyfin:8096", "secret")
    assert isinstance(create_subtitle_encoder(Settings(), server), JellyfinSubtitleEncoder)

    settings = Settings(extraction={"backend": "ffmpeg", "path_mappings": ["/media=/mnt/media"], "overwrite": True})
    encoder = create_subtitle_encoder(settings, server)
    assert isinstance(encoder, FfmpegSubtitleEncoder)
    assert encoder.overwrite is True
    assert encoder.path_mappings == [("/media", "/mnt/media")]

    with pytest.raises(ValueError):
        create_subtitle_encoder(Settings(extraction={"backend": "ocr"}), server)
