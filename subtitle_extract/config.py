"""
静态配置
从环境变量 (前缀 SUBEXTRACT_，嵌套分隔符 __) 和 .env 文件中读取。
例如: SUBEXTRACT_JELLYFIN__URL=http://127.0.0.1:8096
"""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker_environment() -> bool:
    """检测是否在Docker容器中运行"""
    import os
    # 方法1: 检查 /.dockerenv 文件（Docker标准做法）
    if Path("/.dockerenv").exists():
        return True
    # 方法2: 检查环境变量
    if os.getenv("DOCKER_CONTAINER") == "true" or os.getenv("IN_DOCKER") == "true":
        return True
    return False


def _default_config_dir() -> str:
    return "/app/config" if _is_docker_environment() else "config"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 7790


class LogConfig(BaseModel):
    level: str = "INFO"


class DatabaseConfig(BaseModel):
    # sqlite | mysql | postgresql
    type: str = "sqlite"
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    name: str = "subtitle_extract"
    # 仅 sqlite 使用；为空时放在 config_dir 下
    path: Optional[str] = None


class JellyfinConfig(BaseModel):
    url: str = "http://127.0.0.1:8096"
    api_key: str = ""
    timeout: float = 30.0


class ExtractionConfig(BaseModel):
    # remote: 让 Jellyfin 自己提取并缓存字幕; ffmpeg: 本地提取为外挂字幕文件
    backend: str = "remote"
    ffmpeg_path: Optional[str] = None
    # 为空时字幕写在视频文件旁边
    output_dir: Optional[str] = None
    # 形如 "/media=/mnt/media"，把服务器上的路径映射为本机路径
    path_mappings: List[str] = Field(default_factory=list)
    overwrite: bool = False
    extract_image_subtitles: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SUBEXTRACT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    environment: str = "production"
    tz: str = "Asia/Shanghai"
    ui_culture: str = "zh-CN"
    config_dir: str = Field(default_factory=_default_config_dir)

    server: ServerConfig = Field(default_factory=ServerConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    jellyfin: JellyfinConfig = Field(default_factory=JellyfinConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)


settings = Settings()
