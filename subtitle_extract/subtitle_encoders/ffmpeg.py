"""
本地提取: 调用 ffmpeg 把内嵌字幕写成外挂字幕文件
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from ..exceptions import FFmpegError, PathMappingError
from ..media_servers.base import LibraryItem, MediaSource, MediaStream
from ..utils import run_cancellable
from .base import PGS_SUBTITLE_CODECS, BaseSubtitleEncoder, get_subtitle_extension, is_text_subtitle

# 这些编解码器可以直接复制，其余文本字幕转换为 srt
COPYABLE_CODECS = {"subrip", "srt", "ass", "ssa", "webvtt", "vtt"} | PGS_SUBTITLE_CODECS

ffmpeg_logger = logging.getLogger("ffmpeg_output")


def parse_path_mappings(mappings: List[str]) -> List[Tuple[str, str]]:
    """解析 "服务器路径=本机路径" 形式的映射，按服务器路径长度倒序返回"""
    result = []
    for mapping in mappings:
        if "=" not in mapping:
            raise ValueError(f"无效的路径映射 '{mapping}'，格式应为 服务器路径=本机路径")
        server_prefix, local_prefix = mapping.split("=", 1)
        result.append((server_prefix.strip().rstrip("/\\"), local_prefix.strip().rstrip("/\\")))
    result.sort(key=lambda m: len(m[0]), reverse=True)
    return result


class FfmpegSubtitleEncoder(BaseSubtitleEncoder):
    name = "ffmpeg"

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        path_mappings: Optional[List[str]] = None,
        output_dir: Optional[str] = None,
        overwrite: bool = False,
        extract_image_subtitles: bool = False,
    ):
        super().__init__()
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg") or "ffmpeg"
        self.path_mappings = parse_path_mappings(path_mappings or [])
        self.output_dir = output_dir
        self.overwrite = overwrite
        self.extract_image_subtitles = extract_image_subtitles

    def can_extract(self, stream: MediaStream) -> bool:
        if not stream.is_subtitle or stream.is_external:
            return False
        if stream.codec in PGS_SUBTITLE_CODECS:
            return self.extract_image_subtitles
        return is_text_subtitle(stream)

    def map_path(self, server_path: str) -> str:
        """把媒体服务器上的路径转换为本机路径"""
        normalized = server_path.replace("\\", "/")
        for server_prefix, local_prefix in self.path_mappings:
            prefix = server_prefix.replace("\\", "/")
            if normalized == prefix or normalized.startswith(prefix + "/"):
                return local_prefix + normalized[len(prefix):]
        return server_path

    def sidecar_name(self, stem: str, stream: MediaStream, with_index: bool = False) -> str:
        parts = [stem, (stream.language or "und").lower()]
        if stream.is_forced:
            parts.append("forced")
        if stream.is_hearing_impaired:
            parts.append("sdh")
        if with_index:
            parts.append(str(stream.index))
        parts.append(get_subtitle_extension(stream.codec))
        return ".".join(parts)

    def build_output_path(self, video_path: str, media_source: MediaSource, stream: MediaStream) -> Path:
        video = Path(video_path)
        target_dir = Path(self.output_dir) if self.output_dir else video.parent
        name = self.sidecar_name(video.stem, stream)
        # 同一媒体源中有多条字幕流得到相同的文件名时，追加流序号
        duplicates = [
            s for s in media_source.subtitle_streams
            if self.can_extract(s) and self.sidecar_name(video.stem, s) == name
        ]
        if len(duplicates) > 1:
            name = self.sidecar_name(video.stem, stream, with_index=True)
        return target_dir / name

    def build_command(self, input_path: str, stream: MediaStream, output_path: Path) -> List[str]:
        codec_arg = "copy" if stream.codec in COPYABLE_CODECS else "srt"
        return [
            self.ffmpeg_path,
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", input_path,
            "-map", f"0:{stream.index}",
            "-c:s", codec_arg,
            str(output_path),
        ]

    async def extract_subtitle(
        self,
        item: LibraryItem,
        media_source: MediaSource,
        stream: MediaStream,
        cancel_event: asyncio.Event
    ) -> Optional[str]:
        server_path = media_source.path or item.path
        if not server_path:
            raise PathMappingError("", f"媒体项 '{item.name}' 没有文件路径")
        local_path = self.map_path(server_path)
        if not os.path.isfile(local_path):
            raise PathMappingError(server_path, f"无法访问媒体文件: {local_path} (服务器路径: {server_path})")

        output_path = self.build_output_path(local_path, media_source, stream)
        if output_path.exists() and not self.overwrite:
            self.logger.debug(f"字幕文件已存在，跳过: {output_path}")
            return None
        output_path.parent.mkdir(parents=True, exist_ok=True)

        # 先写入临时文件，成功后再替换，失败时不会破坏已有的字幕文件
        partial_path = output_path.with_name(f"{output_path.stem}.partial{output_path.suffix}")
        cmd = self.build_command(local_path, stream, partial_path)
        self.logger.debug(f"执行: {' '.join(cmd)}")
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await run_cancellable(process.communicate(), cancel_event)
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            # 删除写了一半的文件
            partial_path.unlink(missing_ok=True)
            raise

        output = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
        if output:
            ffmpeg_logger.info(f"[{item.id} #{stream.index}] {output}")
        if process.returncode != 0:
            partial_path.unlink(missing_ok=True)
            raise FFmpegError(
                f"ffmpeg 退出码 {process.returncode}",
                exit_code=process.returncode,
                output=output,
                item_id=item.id,
                stream_index=stream.index,
            )

        os.replace(partial_path, output_path)
        self.logger.info(f"已提取字幕: {output_path}")
        return str(output_path)
