"""Codec collaborators: Pillow for images, the ffmpeg binary for audio."""
import base64
import io
import logging
import subprocess
from pathlib import Path
from typing import Optional

from PIL import Image, ImageFilter, UnidentifiedImageError

from mediabatch.config import (
    FFMPEG_BINARY,
    PLACEHOLDER_BLUR_RADIUS,
    PLACEHOLDER_QUALITY,
    PLACEHOLDER_WIDTH,
)
from mediabatch.conversion.resize import resize_exact, scale_to_width
from mediabatch.errors import CodecError, ItemTimeoutError

logger = logging.getLogger("mediabatch.codecs")

# Source extension -> Pillow format used for the resized original
EXTENSION_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".avif": "AVIF",
    ".gif": "GIF",
    ".bmp": "BMP",
    ".tif": "TIFF",
    ".tiff": "TIFF",
}
FORMAT_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "WEBP": ".webp",
    "AVIF": ".avif",
    "GIF": ".gif",
    "BMP": ".bmp",
    "TIFF": ".tiff",
}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _to_rgb_or_rgba(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    return img.convert("RGBA" if _has_alpha(img) else "RGB")


class ImageCodec:
    """Decode, resize and encode raster images."""

    def open(self, source: Path) -> Image.Image:
        """Decode source fully. Raises CodecError for missing, corrupt or unknown content."""
        try:
            with Image.open(source) as img:
                img.load()
                fmt = img.format
                decoded = img.copy() if img.mode in ("RGB", "RGBA", "L", "LA") else _to_rgb_or_rgba(img)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise CodecError(f"Cannot decode image: {e}") from e
        decoded.format = fmt
        return decoded

    def resize(self, img: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
        return resize_exact(img, width, height)

    def encode(self, img: Image.Image, fmt: str, quality: int) -> bytes:
        """Encode to one of the next-gen variants (AVIF or WEBP)."""
        fmt = fmt.upper()
        buf = io.BytesIO()
        work = _to_rgb_or_rgba(img)
        if fmt == "WEBP":
            work.save(buf, format="WEBP", quality=quality, method=6)
        elif fmt == "AVIF":
            work.save(buf, format="AVIF", quality=quality)
        else:
            raise CodecError(f"Unsupported variant format: {fmt}")
        return buf.getvalue()

    @staticmethod
    def original_format(img: Image.Image, original_name: str) -> tuple[str, str]:
        """(Pillow format, file extension) of the source container. Unwritable formats become PNG."""
        ext = Path(original_name).suffix.lower()
        fmt = EXTENSION_FORMATS.get(ext)
        if fmt is None:
            fmt = (img.format or "").upper()
            ext = FORMAT_EXTENSIONS.get(fmt, "")
        if fmt not in FORMAT_EXTENSIONS:
            return "PNG", ".png"
        return fmt, ext

    def encode_optimized(self, img: Image.Image, fmt: str, quality: int) -> bytes:
        """Re-encode in the source container with settings that keep the file small."""
        buf = io.BytesIO()
        if fmt == "PNG":
            work = _to_rgb_or_rgba(img)
            # Palette quantization; quality sets how many colours may be kept.
            colors = max(16, min(256, int(256 * quality / 100)))
            work = work.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
            work.save(buf, format="PNG", optimize=True, compress_level=9)
        elif fmt == "JPEG":
            img.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True, progressive=True)
        elif fmt in ("WEBP", "AVIF"):
            return self.encode(img, fmt, quality)
        elif fmt == "GIF":
            img.convert("RGBA" if _has_alpha(img) else "RGB").save(buf, format="GIF", optimize=True)
        elif fmt == "TIFF":
            img.save(buf, format="TIFF", compression="tiff_adobe_deflate")
        else:
            _to_rgb_or_rgba(img).convert("RGB").save(buf, format=fmt)
        return buf.getvalue()

    def placeholder(self, img: Image.Image) -> str:
        """Tiny blurred preview as a data URL."""
        small = scale_to_width(_to_rgb_or_rgba(img), PLACEHOLDER_WIDTH)
        small = small.filter(ImageFilter.GaussianBlur(radius=PLACEHOLDER_BLUR_RADIUS))
        buf = io.BytesIO()
        small.save(buf, format="WEBP", quality=PLACEHOLDER_QUALITY)
        b64 = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/webp;base64,{b64}"


class AudioTranscoder:
    """Transcode audio to MP3 through ffmpeg."""

    def __init__(self, binary: str = FFMPEG_BINARY):
        self.binary = binary

    def command(self, src: Path, out_path: Path, bitrate: str, channels: int, speed: float) -> list[str]:
        cmd = [
            self.binary, "-y", "-hide_banner", "-loglevel", "error",
            "-i", str(src),
            "-vn",
            "-ac", str(channels),
            "-codec:a", "libmp3lame",
            "-b:a", bitrate,
        ]
        if speed != 1.0:
            # atempo changes tempo without changing pitch
            cmd += ["-filter:a", f"atempo={speed:g}"]
        cmd.append(str(out_path))
        return cmd

    def transcode(
        self,
        src: Path,
        out_path: Path,
        bitrate: str,
        channels: int,
        speed: float = 1.0,
        timeout: Optional[float] = None,
    ) -> None:
        cmd = self.command(src, out_path, bitrate, channels, speed)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            logger.error("ffmpeg not found. Install ffmpeg for audio conversion.")
            raise CodecError("ffmpeg not installed") from e
        except subprocess.TimeoutExpired as e:
            out_path.unlink(missing_ok=True)
            raise ItemTimeoutError(timeout or 0) from e
        if result.returncode != 0:
            out_path.unlink(missing_ok=True)
            detail = (result.stderr or result.stdout or "").strip().splitlines()
            raise CodecError(detail[-1] if detail else "ffmpeg failed")
        logger.debug("ffmpeg finished: %s", " ".join(cmd))
