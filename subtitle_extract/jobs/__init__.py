from .base import BaseJob
from .extract_subtitles import ExtractSubtitlesJob

__all__ = [
    'BaseJob',
    'ExtractSubtitlesJob',
]
