"""FastAPI application exposing the restreaming controls."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import RestreamerConfig, flatten_channels, load_config, load_platforms
from .errors import RestreamerError, StorageError, ValidationError
from .media import MediaLibrary
from .models import StreamLabels
from .registry import SessionRegistry
from .storage import ObjectStorageClient
from .stream_manager import StreamingManager

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DownloadPayload(CamelModel):
    key: str = ""


class StartStreamPayload(CamelModel):
    file_name: str = Field("", alias="fileName")
    stream_key: str = Field("", alias="streamKey")
    title: str = ""
    channel: str = ""
    emoji: str = ""
    loop: bool = False
    destination_url: Optional[str] = Field(None, alias="destinationUrl")


class StopStreamPayload(CamelModel):
    stream_key: str = Field("", alias="streamKey")


class DeletePayload(CamelModel):
    file_name: str = Field("", alias="fileName")


class FolderPayload(CamelModel):
    path: str = ""


class DeleteObjectsPayload(CamelModel):
    keys: List[str] = Field(default_factory=list)


class RenameObjectPayload(CamelModel):
    old_key: str = Field("", alias="oldKey")
    new_key: str = Field("", alias="newKey")


def _first_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


def create_app(
    config: RestreamerConfig | None = None,
    storage: ObjectStorageClient | None = None,
    manager: StreamingManager | None = None,
) -> FastAPI:
    config = config or load_config()
    if manager is None:
        manager = StreamingManager(config.stream, SessionRegistry(), MediaLibrary(config.media))
    registry = manager.registry
    media = manager.media
    if storage is None and config.storage.is_configured:
        storage = ObjectStorageClient(config.storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Restreamer started, media root %s", media.root.resolve())
        yield
        await manager.shutdown()
        logger.info("Restreamer stopped.")

    app = FastAPI(title=config.project_name, lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.media = media
    app.state.manager = manager
    app.state.storage = storage

    @app.exception_handler(RestreamerError)
    async def restreamer_error(request: Request, exc: RestreamerError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _first_error(exc)})

    def require_storage() -> ObjectStorageClient:
        if storage is None:
            raise StorageError("Storage client not initialized")
        return storage

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "streams": len(registry)}

    @app.get("/platforms")
    def platforms() -> List[Dict[str, Any]]:
        return load_platforms(config.platforms_file)

    @app.get("/youtube-channels")
    def youtube_channels() -> List[Dict[str, Any]]:
        return flatten_channels(load_platforms(config.platforms_file))

    @app.get("/videos")
    def videos() -> List[Dict[str, Any]]:
        try:
            return media.list_videos()
        except OSError as exc:
            raise RestreamerError(f"Failed to list local videos: {exc}") from exc

    @app.post("/download")
    def download(payload: DownloadPayload) -> Dict[str, str]:
        if not payload.key:
            raise ValidationError("Key is required")
        client = require_storage()
        target = media.target_for_download(payload.key)
        try:
            client.download_to(payload.key, target)
        except OSError as exc:
            raise RestreamerError(f"Failed to write {target.name}: {exc}") from exc
        return {"message": "Download complete", "fileName": target.name}

    @app.post("/stream/start")
    async def start_stream(payload: StartStreamPayload) -> Dict[str, str]:
        if not payload.file_name or not payload.stream_key:
            raise ValidationError("fileName and streamKey are required")
        labels = StreamLabels(title=payload.title, channel=payload.channel, emoji=payload.emoji)
        session = await manager.start_session(
            payload.stream_key,
            payload.file_name,
            destination_url=payload.destination_url,
            loop=payload.loop,
            labels=labels,
        )
        return {
            "message": "Stream started",
            "fileName": session.source_file,
            "channel": session.labels.channel,
        }

    @app.post("/stream/stop")
    async def stop_stream(payload: StopStreamPayload) -> Dict[str, str]:
        if not payload.stream_key:
            raise ValidationError("streamKey is required")
        await manager.stop_session(payload.stream_key)
        return {"message": "Stream stopping"}

    @app.post("/stream/stop-all")
    async def stop_all_streams() -> Dict[str, str]:
        count = await manager.stop_all()
        return {"message": f"Stopping {count} stream(s)"}

    @app.get("/stream/status")
    async def stream_status() -> Dict[str, Any]:
        return {"streams": manager.list_status()}

    @app.get("/stream/logs")
    async def stream_logs(stream_key: str = Query("", alias="streamKey")) -> Dict[str, List[str]]:
        if not stream_key:
            raise ValidationError("streamKey is required")
        return {"logs": manager.get_logs(stream_key)}

    @app.post("/delete")
    def delete_video(payload: DeletePayload) -> Dict[str, str]:
        if not payload.file_name:
            raise ValidationError("fileName is required")
        media.delete(payload.file_name, registry)
        return {"message": "File deleted", "fileName": payload.file_name}

    @app.get("/objects")
    def list_objects(prefix: str = "") -> List[Dict[str, Any]]:
        return require_storage().list_objects(prefix)

    @app.get("/bucket")
    def bucket() -> Dict[str, Any]:
        return require_storage().bucket_stats()

    @app.post("/objects/folder")
    def create_folder(payload: FolderPayload) -> Dict[str, str]:
        if not payload.path.strip("/"):
            raise ValidationError("path is required")
        key = require_storage().create_folder(payload.path)
        return {"message": "Folder created", "key": key}

    @app.post("/objects/delete")
    def delete_objects(payload: DeleteObjectsPayload) -> Dict[str, str]:
        keys = [key for key in payload.keys if key]
        if not keys:
            raise ValidationError("keys are required")
        count = require_storage().delete_objects(keys)
        return {"message": f"Deleted {count} object(s)"}

    @app.post("/objects/rename")
    def rename_object(payload: RenameObjectPayload) -> Dict[str, str]:
        if not payload.old_key or not payload.new_key:
            raise ValidationError("oldKey and newKey are required")
        require_storage().rename_object(payload.old_key, payload.new_key)
        return {"message": "Object renamed", "key": payload.new_key}

    return app


app = create_app()
