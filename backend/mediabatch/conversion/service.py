"""Per-item conversion: turns one staged upload into registered artifacts."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Optional

from mediabatch.config import AUDIO_EXTENSIONS, IMAGE_EXTENSIONS, ITEM_TIMEOUT_SECONDS, MAX_WORKERS
from mediabatch.conversion.codecs import AudioTranscoder, ImageCodec
from mediabatch.conversion.models import (
    Artifact,
    ArtifactKind,
    AudioConfig,
    ConversionConfig,
    ConversionTask,
    ImageConfig,
    InputItem,
    MediaKind,
)
from mediabatch.errors import CodecError, ItemTimeoutError, RegistryCollisionError
from mediabatch.naming import sanitize
from mediabatch.storage import OutputRegistry, ScratchSpace

logger = logging.getLogger("mediabatch.service")

# (artifact kind, encoder format, name ending) of the two next-gen variants
IMAGE_VARIANTS = (
    (ArtifactKind.AVIF, "AVIF", ".avif"),
    (ArtifactKind.WEBP, "WEBP", ".webp"),
)
AUDIO_SUFFIX = ".mp3"

# Extensions accepted per media kind; names without an extension are left to the codec
ACCEPTED_EXTENSIONS = {
    MediaKind.IMAGE: IMAGE_EXTENSIONS,
    MediaKind.AUDIO: AUDIO_EXTENSIONS,
}


class ConversionService:
    """Runs the conversion of single items against the codec collaborators."""

    def __init__(
        self,
        registry: Optional[OutputRegistry] = None,
        scratch: Optional[ScratchSpace] = None,
        image_codec: Optional[ImageCodec] = None,
        audio_transcoder: Optional[AudioTranscoder] = None,
        item_timeout: float = ITEM_TIMEOUT_SECONDS,
        codec_workers: int = MAX_WORKERS,
    ):
        self.scratch = scratch or ScratchSpace()
        self.registry = registry or OutputRegistry(self.scratch.output_dir)
        self.image_codec = image_codec or ImageCodec()
        self.audio_transcoder = audio_transcoder or AudioTranscoder()
        self.item_timeout = item_timeout
        self.codec_workers = codec_workers
        self._codec_pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ItemTimeoutError(self.item_timeout)
        return remaining

    def _call_codec(self, deadline: float, fn, *args):
        """Run one image codec call, waiting no longer than the item's remaining time.

        A call that overruns is abandoned; its result is never stored.
        """
        with self._pool_lock:
            if self._codec_pool is None:
                self._codec_pool = ThreadPoolExecutor(max_workers=self.codec_workers, thread_name_prefix="codec")
            future = self._codec_pool.submit(fn, *args)
        try:
            return future.result(timeout=self._remaining(deadline))
        except FutureTimeoutError:
            future.cancel()
            raise ItemTimeoutError(self.item_timeout) from None

    def _store(self, task: ConversionTask, kind: ArtifactKind, virtual_path: str, data: bytes) -> Path:
        location = self.registry.location_for(virtual_path)
        # "x": never overwrite another item's output
        with open(location, "xb") as f:
            f.write(data)
        self._register(task, kind, virtual_path, location, len(data))
        return location

    def _register(self, task: ConversionTask, kind: ArtifactKind, virtual_path: str, location: Path, size: int) -> None:
        self.registry.register(virtual_path, location)
        task.add_artifact(Artifact(kind=kind, virtual_path=virtual_path, size_bytes=size, source_item=task.item.item_id))
        logger.info("Converted %s -> %s", task.item.original_name, virtual_path)

    def _convert_image(self, task: ConversionTask, config: ImageConfig, deadline: float) -> None:
        item = task.item
        codec = self.image_codec
        img = self._call_codec(deadline, codec.open, item.content_path)
        placeholder = self._call_codec(deadline, codec.placeholder, img)

        suffixes = [suffix for _, _, suffix in IMAGE_VARIANTS]
        original_fmt = resized_suffix = None
        if config.resize_requested:
            original_fmt, ext = codec.original_format(img, item.original_name)
            resized_suffix = f"_resized{ext}"
            suffixes.append(resized_suffix)
            work = self._call_codec(deadline, codec.resize, img, config.width, config.height)
        else:
            work = img
        paths = self.registry.allocate(sanitize(item.original_name), suffixes)

        for kind, fmt, suffix in IMAGE_VARIANTS:
            data = self._call_codec(deadline, codec.encode, work, fmt, config.quality)
            self._store(task, kind, paths[suffix], data)

        if resized_suffix:
            data = self._call_codec(deadline, codec.encode_optimized, work, original_fmt, config.quality)
            self._store(task, ArtifactKind.RESIZED_ORIGINAL, paths[resized_suffix], data)

        task.add_artifact(
            Artifact(
                kind=ArtifactKind.PLACEHOLDER,
                inline_data=placeholder,
                size_bytes=len(placeholder),
                source_item=item.item_id,
            )
        )

    def _convert_audio(self, task: ConversionTask, config: AudioConfig, deadline: float) -> None:
        item = task.item
        vpath = self.registry.allocate(sanitize(item.original_name), [AUDIO_SUFFIX])[AUDIO_SUFFIX]
        location = self.registry.location_for(vpath)
        self.audio_transcoder.transcode(
            item.content_path,
            location,
            bitrate=config.bitrate,
            channels=config.channel_count,
            speed=config.speed,
            timeout=self._remaining(deadline),
        )
        self._register(task, ArtifactKind.AUDIO, vpath, location, location.stat().st_size)

    def _check_extension(self, item: InputItem) -> None:
        ext = Path(item.original_name).suffix.lower()
        if ext and ext not in ACCEPTED_EXTENSIONS[item.kind]:
            raise CodecError(f"Unsupported format: {ext}")

    def _discard_outputs(self, task: ConversionTask) -> None:
        for artifact in task.artifacts:
            if artifact.is_inline:
                continue
            location = self.registry.resolve(artifact.virtual_path)
            if location is None:
                continue
            try:
                location.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove %s: %s", location, e)

    def run(self, item: InputItem, config: ConversionConfig) -> ConversionTask:
        """Convert one item. Never raises: failures end in a failed task with the cause.

        The staged upload is removed once the task is terminal.
        """
        task = ConversionTask(item)
        task.start()
        deadline = time.monotonic() + self.item_timeout
        try:
            self._check_extension(item)
            if item.kind == MediaKind.IMAGE and isinstance(config, ImageConfig):
                self._convert_image(task, config, deadline)
            elif item.kind == MediaKind.AUDIO and isinstance(config, AudioConfig):
                self._convert_audio(task, config, deadline)
            else:
                raise CodecError(f"No {item.kind.value} configuration for {item.original_name}")
            self._remaining(deadline)
            task.complete()
        except RegistryCollisionError as e:
            logger.error("Registry collision while converting %s: %s", item.original_name, e)
            self._discard_outputs(task)
            task.fail(str(e))
        except ItemTimeoutError as e:
            logger.warning("Conversion of %s timed out", item.original_name)
            self._discard_outputs(task)
            task.fail(str(e))
        except Exception as e:
            logger.exception("Conversion failed for %s: %s", item.original_name, e)
            self._discard_outputs(task)
            task.fail(str(e) or e.__class__.__name__)
        finally:
            self.scratch.discard(item.content_path)
        return task

    def shutdown(self) -> None:
        """Release codec threads. Calls still running are abandoned."""
        with self._pool_lock:
            if self._codec_pool is not None:
                self._codec_pool.shutdown(wait=False, cancel_futures=True)
                self._codec_pool = None


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service
