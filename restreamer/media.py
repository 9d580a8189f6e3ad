"""Access to the local media root."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Dict, List

from dateutil.tz import tzutc

from .config import MediaConfig
from .errors import MediaNotFoundError, ValidationError
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_NAME = "downloaded_video.mp4"


class MediaLibrary:
    """Lists, resolves and deletes the media files sessions stream from."""

    def __init__(self, config: MediaConfig):
        self.root = Path(config.root)
        self.extensions = tuple(ext.lower() for ext in config.extensions)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def list_videos(self) -> List[Dict[str, Any]]:
        self.ensure_root()
        videos = []
        for path in sorted(self.root.iterdir(), key=lambda p: p.name):
            if not path.is_file() or path.suffix.lower() not in self.extensions:
                continue
            stat = path.stat()
            videos.append(
                {
                    "name": path.name,
                    "size": stat.st_size,
                    "lastModified": dt.datetime.fromtimestamp(stat.st_mtime, tzutc()).isoformat(),
                    "path": f"/{path.name}",
                }
            )
        return videos

    def resolve(self, file_name: str) -> Path:
        """Map a bare file name onto the media root, refusing anything that escapes it."""
        if not file_name or file_name in {".", ".."} or "/" in file_name or "\\" in file_name:
            raise ValidationError(f"Invalid file name: {file_name!r}")
        return self.root / file_name

    def require_streamable(self, file_name: str) -> Path:
        path = self.resolve(file_name)
        if not path.is_file() or path.stat().st_size == 0:
            raise MediaNotFoundError(f"File not found: {file_name}")
        return path

    def delete(self, file_name: str, registry: SessionRegistry) -> Path:
        """Remove an idle media file; files claimed by a session are refused."""
        path = self.resolve(file_name)
        if not path.is_file():
            raise MediaNotFoundError(f"File not found: {file_name}")
        with registry.unused_file(file_name):
            path.unlink()
        logger.info("Deleted local media %s", file_name)
        return path

    def target_for_download(self, key: str) -> Path:
        name = key.split("/")[-1] or DEFAULT_DOWNLOAD_NAME
        return self.resolve(name)
