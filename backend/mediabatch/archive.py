"""Zip archives of registered artifacts, streamed as they are written."""
import logging
import zipfile
from pathlib import Path
from typing import Iterable, Iterator

from mediabatch.errors import EmptyArchiveRequestError, NoValidArtifactsError
from mediabatch.storage import OutputRegistry

logger = logging.getLogger("mediabatch.archive")

CHUNK_SIZE = 1024 * 1024


class _ChunkSink:
    """Write-only, unseekable file object; zipfile falls back to data descriptors."""

    def __init__(self):
        self._chunks: list[bytes] = []

    def write(self, data: bytes) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> Iterator[bytes]:
        chunks, self._chunks = self._chunks, []
        yield from chunks


def validated_entries(virtual_paths: Iterable[str], registry: OutputRegistry) -> list[tuple[str, Path]]:
    """(archive name, location) for each registered, existing path. Others are skipped."""
    entries: list[tuple[str, Path]] = []
    seen: set[str] = set()
    for vpath in virtual_paths:
        if not isinstance(vpath, str) or vpath in seen:
            continue
        seen.add(vpath)
        location = registry.resolve(vpath)
        if location is None:
            logger.warning("Skipping unregistered archive entry: %r", vpath)
            continue
        if not location.is_file():
            logger.warning("Skipping archive entry with no file: %s", vpath)
            continue
        entries.append((vpath.rsplit("/", 1)[-1], location))
    return entries


def _write_zip(entries: list[tuple[str, Path]]) -> Iterator[bytes]:
    sink = _ChunkSink()
    with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for arcname, location in entries:
            with open(location, "rb") as src, zf.open(arcname, "w") as dest:
                while chunk := src.read(CHUNK_SIZE):
                    dest.write(chunk)
                    yield from sink.drain()
            yield from sink.drain()
    yield from sink.drain()
    logger.info("Streamed zip with %s entries", len(entries))


def stream_archive(virtual_paths: list[str], registry: OutputRegistry) -> Iterator[bytes]:
    """Validate references against the registry and return the zip as a chunk iterator.

    Raises EmptyArchiveRequestError for an empty request and NoValidArtifactsError
    when nothing in it is registered. Both are raised before any byte is produced.
    """
    if not virtual_paths:
        raise EmptyArchiveRequestError("No files specified")
    entries = validated_entries(virtual_paths, registry)
    if not entries:
        raise NoValidArtifactsError("None of the requested files are available")
    return _write_zip(entries)
