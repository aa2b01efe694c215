"""
插件描述
任务的名称和描述来自这里。
"""

from typing import Optional

from ._version import APP_VERSION


class SubtitleExtractPlugin:
    """字幕提取插件"""

    PLUGIN_ID = "cd893c24-b59e-4060-87b2-184070e1a0d6"

    _current: Optional["SubtitleExtractPlugin"] = None

    def __init__(self, version: str = APP_VERSION):
        self.id = self.PLUGIN_ID
        self.name = "Subtitle Extract"
        self.description = "Extracts embedded subtitles"
        self.version = version

    @classmethod
    def register(cls, plugin: Optional["SubtitleExtractPlugin"] = None) -> "SubtitleExtractPlugin":
        cls._current = plugin or cls()
        return cls._current

    @classmethod
    def current(cls) -> "SubtitleExtractPlugin":
        if cls._current is None:
            raise RuntimeError("插件尚未注册")
        return cls._current
