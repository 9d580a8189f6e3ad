"""Configuration helpers for the restreamer."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 9001


@dataclass
class StreamConfig:
    ffmpeg_binary: str = "ffmpeg"
    default_ingest_url: str = "rtmp://a.rtmp.youtube.com/live2"
    default_bitrate: str = "4500k"
    audio_bitrate: str = "160k"
    log_capacity: int = 1000
    stop_timeout: float = 10.0


@dataclass
class MediaConfig:
    root: Path = Path("public")
    extensions: tuple = (".mp4", ".webm", ".ogg", ".mov", ".avi", ".mkv", ".flv")


@dataclass
class StorageConfig:
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: Optional[str] = None
    region: str = "auto"

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.access_key_id and self.secret_access_key and self.bucket)


@dataclass
class RestreamerConfig:
    project_name: str = "Restreamer"
    server: ServerConfig = field(default_factory=ServerConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    platforms_file: Path = Path("platforms.json")


def load_config() -> RestreamerConfig:
    """Load configuration from environment variables."""
    server = ServerConfig(
        host=os.getenv("RESTREAMER_HOST", "127.0.0.1"),
        port=int(os.getenv("RESTREAMER_PORT", "9001")),
    )

    stream = StreamConfig(
        ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
        default_ingest_url=os.getenv("DEFAULT_INGEST_URL", "rtmp://a.rtmp.youtube.com/live2"),
        default_bitrate=os.getenv("DEFAULT_BITRATE", "4500k"),
        audio_bitrate=os.getenv("AUDIO_BITRATE", "160k"),
        log_capacity=int(os.getenv("RESTREAMER_LOG_CAPACITY", "1000")),
        stop_timeout=float(os.getenv("RESTREAMER_STOP_TIMEOUT", "10")),
    )

    storage = StorageConfig(
        endpoint=os.getenv("R2_ENDPOINT"),
        access_key_id=os.getenv("R2_ACCESS_KEY_ID"),
        secret_access_key=os.getenv("R2_SECRET_ACCESS_KEY"),
        bucket=os.getenv("R2_BUCKET_NAME"),
    )

    return RestreamerConfig(
        project_name=os.getenv("PROJECT_NAME", "Restreamer"),
        server=server,
        stream=stream,
        media=MediaConfig(root=Path(os.getenv("MEDIA_ROOT", "public"))),
        storage=storage,
        platforms_file=Path(os.getenv("PLATFORMS_FILE", "platforms.json")),
    )


def load_platforms(path: Path) -> List[Dict[str, Any]]:
    """Read the destination platforms file.

    The file holds a list of platforms, each with ``id``, ``name``,
    ``rtmpUrl`` and a ``channels`` list. A bare list of channels is accepted
    too and wrapped as a single ``youtube`` platform. A missing file means no
    destinations are configured.
    """
    if not path.exists():
        logger.info("No platforms file at %s", path)
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read platforms config: {exc}") from exc

    if not isinstance(data, list):
        raise ConfigError("Platforms config must be a JSON list")
    if data and all(isinstance(item, dict) and "streamKey" in item for item in data):
        return [{"id": "youtube", "name": "YouTube", "rtmpUrl": None, "channels": data}]
    for platform in data:
        if not isinstance(platform, dict) or not isinstance(platform.get("channels", []), list):
            raise ConfigError("Each platform must be an object with a channels list")
        platform.setdefault("channels", [])
    return data


def flatten_channels(platforms: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return every channel of every platform, tagged with its ingest URL."""
    channels = []
    for platform in platforms:
        for channel in platform.get("channels", []):
            entry = dict(channel)
            entry.setdefault("platform", platform.get("id"))
            if platform.get("rtmpUrl"):
                entry.setdefault("destinationUrl", platform["rtmpUrl"])
            channels.append(entry)
    return channels
