"""API routes for batch upload, conversion and downloads."""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from starlette.datastructures import UploadFile as StarletteUploadFile

from mediabatch.archive import stream_archive
from mediabatch.batch import process_batch
from mediabatch.config import (
    AUDIO_EXTENSIONS,
    IMAGE_EXTENSIONS,
    MAX_AUDIO_SIZE_BYTES,
    MAX_FILES_PER_BATCH,
    MAX_IMAGE_SIZE_BYTES,
    PROCESSED_URL_PREFIX,
)
from mediabatch.conversion.models import ArtifactKind, BatchResult, InputItem, ItemOutcome, MediaKind
from mediabatch.conversion.options import parse_mapping, resolve_configs
from mediabatch.conversion.service import get_conversion_service
from mediabatch.errors import EmptyArchiveRequestError, NoValidArtifactsError
from mediabatch.naming import repair_transport_name

logger = logging.getLogger("mediabatch.api")
router = APIRouter(prefix="/api", tags=["converter"])
files_router = APIRouter(tags=["files"])

# Legacy per-file option fields: resize_<original filename> = JSON
LEGACY_OPTION_PREFIX = "resize_"


def _max_bytes_for(kind: MediaKind) -> int:
    return MAX_IMAGE_SIZE_BYTES if kind == MediaKind.IMAGE else MAX_AUDIO_SIZE_BYTES


async def _stage_uploads(files: list[UploadFile], kind: MediaKind) -> list[InputItem]:
    """Write uploads to the staging dir. Any fault removes everything staged so far."""
    svc = get_conversion_service()
    max_bytes = _max_bytes_for(kind)
    max_mb = max_bytes // (1024 * 1024)
    items: list[InputItem] = []
    for file in files:
        original_name = repair_transport_name(file.filename or "")
        dest = svc.scratch.staging_path(original_name)
        try:
            total = 0
            with open(dest, "wb") as f:
                while chunk := await file.read(1024 * 1024):
                    total += len(chunk)
                    if total > max_bytes:
                        raise HTTPException(413, f"File too large: {original_name} (max {max_mb} MB)")
                    f.write(chunk)
        except HTTPException:
            svc.scratch.discard(dest)
            for staged in items:
                svc.scratch.discard(staged.content_path)
            raise
        except Exception as e:
            logger.exception("Upload failed for %s: %s", original_name, e)
            svc.scratch.discard(dest)
            for staged in items:
                svc.scratch.discard(staged.content_path)
            raise HTTPException(500, "Upload failed")
        items.append(
            InputItem(
                item_id=uuid.uuid4().hex,
                original_name=original_name,
                kind=kind,
                size_bytes=total,
                content_path=dest,
            )
        )
    return items


async def _read_batch_form(request: Request, field: str) -> tuple[list[UploadFile], dict[str, Any]]:
    """Files of one form field plus the option payload (options JSON and legacy resize_<name> fields)."""
    form = await request.form()
    files = [f for f in form.getlist(field) if isinstance(f, StarletteUploadFile)]
    if not files:
        raise HTTPException(400, "No files uploaded")
    if len(files) > MAX_FILES_PER_BATCH:
        raise HTTPException(400, f"Max {MAX_FILES_PER_BATCH} files per batch")

    payload: dict[str, Any] = {}
    for key, value in form.multi_items():
        if isinstance(value, str) and key.startswith(LEGACY_OPTION_PREFIX):
            payload[repair_transport_name(key[len(LEGACY_OPTION_PREFIX):])] = value
    raw_options = form.get("options")
    if isinstance(raw_options, str):
        parsed = parse_mapping(raw_options)
        if parsed is None:
            logger.warning("Ignoring malformed options field")
        else:
            payload.update(parsed)
    return files, payload


async def _run_batch(request: Request, field: str, kind: MediaKind) -> BatchResult:
    files, payload = await _read_batch_form(request, field)
    items = await _stage_uploads(files, kind)
    configs = resolve_configs(payload, items)
    return await asyncio.to_thread(process_batch, items, configs)


def _base_result(outcome: ItemOutcome) -> dict:
    return {
        "originalName": outcome.item.original_name,
        "status": outcome.status.value,
        "error": outcome.error,
        "originalSize": outcome.item.size_bytes,
    }


def _image_result(outcome: ItemOutcome) -> dict:
    result = _base_result(outcome)
    for kind, key in ((ArtifactKind.AVIF, "avif"), (ArtifactKind.WEBP, "webp"), (ArtifactKind.RESIZED_ORIGINAL, "resizedOriginal")):
        artifact = outcome.artifact(kind)
        if artifact is not None:
            result[key] = artifact.virtual_path
            result[f"{key}Size"] = artifact.size_bytes
    placeholder = outcome.artifact(ArtifactKind.PLACEHOLDER)
    if placeholder is not None:
        result["placeholder"] = placeholder.inline_data
    return result


def _audio_result(outcome: ItemOutcome) -> dict:
    result = _base_result(outcome)
    artifact = outcome.artifact(ArtifactKind.AUDIO)
    if artifact is not None:
        result["output"] = artifact.virtual_path
        result["outputSize"] = artifact.size_bytes
    return result


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_files_per_batch": MAX_FILES_PER_BATCH,
        "max_image_size_mb": MAX_IMAGE_SIZE_BYTES // (1024 * 1024),
        "max_image_size_bytes": MAX_IMAGE_SIZE_BYTES,
        "max_audio_size_mb": MAX_AUDIO_SIZE_BYTES // (1024 * 1024),
        "max_audio_size_bytes": MAX_AUDIO_SIZE_BYTES,
    }


@router.get("/formats")
def get_formats():
    """Accepted input extensions per kind. Uploads with any other extension fail per item."""
    return {
        "image": sorted(IMAGE_EXTENSIONS),
        "audio": sorted(AUDIO_EXTENSIONS),
        "output_image": ["avif", "webp"],
        "output_audio": ["mp3"],
    }


@router.post("/process")
async def process_images(request: Request):
    """Convert a batch of images. Form fields: images (files), options (JSON), resize_<name> (JSON)."""
    result = await _run_batch(request, "images", MediaKind.IMAGE)
    return {"results": [_image_result(o) for o in result]}


@router.post("/process-audio")
async def process_audio(request: Request):
    """Transcode a batch of audio files. Form fields: audio (files), options (JSON)."""
    result = await _run_batch(request, "audio", MediaKind.AUDIO)
    return {"results": [_audio_result(o) for o in result]}


@router.post("/zip")
def create_zip(files: list[Any] = Body(default=[], embed=True)):
    """Stream a zip of previously produced artifacts. Unknown references are skipped."""
    svc = get_conversion_service()
    try:
        chunks = stream_archive(files, svc.registry)
    except EmptyArchiveRequestError as e:
        raise HTTPException(400, str(e))
    except NoValidArtifactsError as e:
        raise HTTPException(404, str(e))
    return StreamingResponse(
        chunks,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="converted.zip"'},
    )


@files_router.get(PROCESSED_URL_PREFIX + "/{name}")
def download_artifact(name: str):
    """Serve one artifact. Only registered outputs are reachable."""
    svc = get_conversion_service()
    location = svc.registry.resolve(f"{PROCESSED_URL_PREFIX}/{name}")
    if location is None or not location.is_file():
        raise HTTPException(404, "File not found")
    return FileResponse(location, filename=Path(name).name)
