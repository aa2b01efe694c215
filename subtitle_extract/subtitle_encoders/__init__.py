"""
字幕提取后端
remote: 由 Jellyfin 提取并缓存; ffmpeg: 本地生成外挂字幕文件
"""

from ..config import Settings
from ..media_servers.jellyfin import JellyfinMediaServer
from .base import BaseSubtitleEncoder, SUBTITLE_CODEC_TO_EXTENSION, get_subtitle_extension
from .ffmpeg import FfmpegSubtitleEncoder
from .jellyfin import JellyfinSubtitleEncoder


def create_subtitle_encoder(settings: Settings, media_server: JellyfinMediaServer) -> BaseSubtitleEncoder:
    extraction = settings.extraction
    backend = extraction.backend.lower()
    if backend == "remote":
        return JellyfinSubtitleEncoder(media_server)
    if backend == "ffmpeg":
        return FfmpegSubtitleEncoder(
            ffmpeg_path=extraction.ffmpeg_path,
            path_mappings=extraction.path_mappings,
            output_dir=extraction.output_dir,
            overwrite=extraction.overwrite,
            extract_image_subtitles=extraction.extract_image_subtitles,
        )
    raise ValueError(f"未知的字幕提取后端: {extraction.backend}")


__all__ = [
    'BaseSubtitleEncoder',
    'FfmpegSubtitleEncoder',
    'JellyfinSubtitleEncoder',
    'SUBTITLE_CODEC_TO_EXTENSION',
    'create_subtitle_encoder',
    'get_subtitle_extension',
]
