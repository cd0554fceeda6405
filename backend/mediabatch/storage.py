"""Scratch directories and the registry of produced artifacts.

Nothing else in the service touches the upload or output directories directly:
uploads are staged through ScratchSpace, outputs are placed and looked up
through OutputRegistry.
"""
import logging
import shutil
import threading
import uuid
from pathlib import Path
from typing import Optional

from mediabatch.config import OUTPUT_DIR, PROCESSED_URL_PREFIX, UPLOAD_DIR
from mediabatch.errors import RegistryCollisionError

logger = logging.getLogger("mediabatch.storage")


def _empty_directory(directory: Path) -> None:
    for entry in directory.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


class ScratchSpace:
    """Upload staging and output directories for one process lifetime."""

    def __init__(self, upload_dir: Path = UPLOAD_DIR, output_dir: Path = OUTPUT_DIR):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)

    def prepare(self) -> None:
        """Create both directories and remove leftovers of a previous run. Call once at startup."""
        for directory in (self.upload_dir, self.output_dir):
            directory.mkdir(parents=True, exist_ok=True)
            _empty_directory(directory)
        logger.info("Scratch space ready (uploads=%s, outputs=%s)", self.upload_dir, self.output_dir)

    def staging_path(self, original_name: str) -> Path:
        """Fresh path for an upload. The user's name only contributes its extension."""
        suffix = Path(original_name or "").suffix.lower()
        if not suffix.isascii() or not suffix[1:].isalnum():
            suffix = ""
        return self.upload_dir / f"{uuid.uuid4().hex}{suffix}"

    def discard(self, path: Path) -> None:
        """Remove a staged upload."""
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove upload %s: %s", path, e)


class OutputRegistry:
    """Virtual path -> file mapping for every artifact this process produced.

    Keys are write-once and never reused, even after the file is gone.
    resolve() is the only way an outside request can reach an output file.
    """

    def __init__(self, output_dir: Path = OUTPUT_DIR, url_prefix: str = PROCESSED_URL_PREFIX):
        self.output_dir = Path(output_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self._entries: dict[str, Path] = {}
        self._reserved: set[str] = set()
        self._lock = threading.Lock()

    def virtual_path(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def location_for(self, virtual_path: str) -> Path:
        """Output location for a path handed out by allocate()."""
        return self.output_dir / virtual_path.rsplit("/", 1)[-1]

    def _taken(self, filename: str) -> bool:
        vpath = self.virtual_path(filename)
        return (
            vpath in self._entries
            or vpath in self._reserved
            or (self.output_dir / filename).exists()
        )

    def allocate(self, base_id: str, suffixes: list[str]) -> dict[str, str]:
        """Reserve one stem for all outputs of an item.

        suffixes are the name endings of each output, e.g. [".avif", ".webp",
        "_resized.png"]. The first stem among base_id, base_id-2, base_id-3, ...
        for which no ending is registered, reserved or present on disk wins.
        Returns suffix -> virtual path.
        """
        with self._lock:
            n = 1
            while True:
                stem = base_id if n == 1 else f"{base_id}-{n}"
                names = [f"{stem}{s}" for s in suffixes]
                if not any(self._taken(name) for name in names):
                    break
                n += 1
            allocated = {s: self.virtual_path(name) for s, name in zip(suffixes, names)}
            self._reserved.update(allocated.values())
        if n > 1:
            logger.info("Name %s already in use, allocated %s", base_id, stem)
        return allocated

    def register(self, virtual_path: str, location: Path) -> None:
        """Record where a virtual path's bytes live. Raises RegistryCollisionError on reuse."""
        with self._lock:
            if virtual_path in self._entries:
                raise RegistryCollisionError(virtual_path)
            self._entries[virtual_path] = Path(location).resolve()
            self._reserved.discard(virtual_path)

    def resolve(self, virtual_path: str) -> Optional[Path]:
        """Registered location for virtual_path, or None. Never looks at the filesystem."""
        with self._lock:
            return self._entries.get(virtual_path)

    def __contains__(self, virtual_path: str) -> bool:
        return self.resolve(virtual_path) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
