import io
import os
import shutil
import tempfile
import uuid
from pathlib import Path

# Scratch dirs for the app singletons; must be set before mediabatch.config is imported.
_SCRATCH_ROOT = Path(tempfile.mkdtemp(prefix="mediabatch-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_SCRATCH_ROOT / "uploads"))
os.environ.setdefault("OUTPUT_DIR", str(_SCRATCH_ROOT / "processed"))

import numpy as np
import pytest
import soundfile as sf
from PIL import Image

from mediabatch.conversion.models import InputItem, MediaKind
from mediabatch.conversion.service import ConversionService
from mediabatch.storage import OutputRegistry, ScratchSpace

HAS_FFMPEG: bool = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None
requires_ffmpeg = pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg not installed")


# Helpers


def image_bytes(size: tuple[int, int] = (64, 48), fmt: str = "PNG", color: tuple = (200, 40, 40)) -> bytes:
    """Encode a solid colour image with a gradient stripe so encoders have something to do."""
    img = Image.new("RGB", size, color)
    for x in range(size[0]):
        img.putpixel((x, size[1] // 2), (x % 256, 255 - x % 256, 128))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def wav_bytes(duration: float = 2.0, sr: int = 44100, channels: int = 2) -> bytes:
    """Short 440 Hz sine as 16-bit PCM WAV."""
    num_frames: int = int(sr * duration)
    t: np.ndarray = np.linspace(0, duration, num_frames, endpoint=False, dtype=np.float32)
    mono: np.ndarray = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
    data: np.ndarray = np.column_stack([mono] * channels) if channels > 1 else mono
    buf = io.BytesIO()
    sf.write(buf, data, sr, subtype="PCM_16", format="WAV")
    return buf.getvalue()


# Fixtures


@pytest.fixture
def scratch(tmp_path: Path) -> ScratchSpace:
    space = ScratchSpace(upload_dir=tmp_path / "uploads", output_dir=tmp_path / "processed")
    space.prepare()
    return space


@pytest.fixture
def registry(scratch: ScratchSpace) -> OutputRegistry:
    return OutputRegistry(scratch.output_dir)


@pytest.fixture
def service(scratch: ScratchSpace, registry: OutputRegistry):
    svc = ConversionService(registry=registry, scratch=scratch)
    yield svc
    svc.shutdown()


@pytest.fixture
def stage(scratch: ScratchSpace):
    """Factory: write bytes to the staging dir and return the InputItem for them."""

    def _stage(name: str, data: bytes, kind: MediaKind = MediaKind.IMAGE) -> InputItem:
        path = scratch.staging_path(name)
        path.write_bytes(data)
        return InputItem(
            item_id=uuid.uuid4().hex,
            original_name=name,
            kind=kind,
            size_bytes=len(data),
            content_path=path,
        )

    return _stage
