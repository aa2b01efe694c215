"""
自定义异常
"""


class SubtitleExtractError(Exception):
    """所有字幕提取相关错误的基类。"""
    pass


class PathMappingError(SubtitleExtractError):
    """服务器路径无法映射为本机可访问的路径。"""

    def __init__(self, server_path: str, message: str = None):
        self.server_path = server_path
        super().__init__(message or f"无法访问媒体文件: {server_path}")


class SubtitleExtractionError(SubtitleExtractError):
    """单条字幕流提取失败。"""

    def __init__(self, message: str, item_id: str = None, stream_index: int = None):
        self.item_id = item_id
        self.stream_index = stream_index
        stream_info = f" (媒体项: {item_id}, 流: {stream_index})" if item_id is not None else ""
        super().__init__(f"{message}{stream_info}")


class FFmpegError(SubtitleExtractionError):
    """FFmpeg 以非零状态退出。"""

    def __init__(self, message: str, exit_code: int = None, output: str = None, **kwargs):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message, **kwargs)
