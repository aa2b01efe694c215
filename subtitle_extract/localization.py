"""
本地化字符串
任务分类等面向前端的文字通过这里按区域设置获取。
"""

import logging
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_CULTURE = "en-US"

_STRINGS: Dict[str, Dict[str, str]] = {
    "en-US": {
        "TasksLibraryCategory": "Library",
        "TaskExtractItemSubtitles": "Extract subtitles: {0}",
    },
    "zh-CN": {
        "TasksLibraryCategory": "媒体库",
        "TaskExtractItemSubtitles": "提取字幕: {0}",
    },
}


class LocalizationManager:
    def __init__(self, culture: str = DEFAULT_CULTURE):
        if culture not in _STRINGS:
            logger.warning(f"不支持的区域设置 '{culture}'，将使用 {DEFAULT_CULTURE}。")
            culture = DEFAULT_CULTURE
        self.culture = culture

    def get_localized_string(self, key: str) -> str:
        """按当前区域设置查找，找不到时回退到 en-US，再找不到时返回键本身。"""
        value = _STRINGS[self.culture].get(key)
        if value is None:
            value = _STRINGS[DEFAULT_CULTURE].get(key, key)
        return value
