"""Conversion items, configs, artifacts and per-item task state."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from mediabatch.errors import InvalidTransitionError


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


class ArtifactKind(str, Enum):
    AVIF = "avif"
    WEBP = "webp"
    RESIZED_ORIGINAL = "resized_original"
    PLACEHOLDER = "placeholder"
    AUDIO = "audio"


@dataclass(frozen=True)
class InputItem:
    """One uploaded file. content_path is the staged upload, owned by the batch."""

    item_id: str
    original_name: str
    kind: MediaKind
    size_bytes: int
    content_path: Path


@dataclass(frozen=True)
class ImageConfig:
    width: Optional[int] = None
    height: Optional[int] = None
    quality: int = 80

    @property
    def resize_requested(self) -> bool:
        return self.width is not None or self.height is not None


@dataclass(frozen=True)
class AudioConfig:
    bitrate: str = "192k"
    channels: str = "stereo"
    speed: float = 1.0

    @property
    def channel_count(self) -> int:
        return 1 if self.channels == "mono" else 2


ConversionConfig = Union[ImageConfig, AudioConfig]


@dataclass(frozen=True)
class Artifact:
    """One produced output.

    File outputs have a registered virtual_path. Inline outputs (the placeholder)
    have no registry entry and carry their data URL in inline_data.
    """

    kind: ArtifactKind
    size_bytes: int
    source_item: str
    virtual_path: Optional[str] = None
    inline_data: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.virtual_path is None


class ConversionTask:
    """In-memory state of one item's conversion: pending -> running -> done | failed."""

    def __init__(self, item: InputItem):
        self.item = item
        self.status = TaskStatus.PENDING
        self.error: Optional[str] = None
        self.artifacts: list[Artifact] = []

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.DONE, TaskStatus.FAILED)

    def start(self) -> None:
        if self.status != TaskStatus.PENDING:
            raise InvalidTransitionError(f"Cannot start task in state {self.status.value}")
        self.status = TaskStatus.RUNNING

    def complete(self) -> None:
        if self.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(f"Cannot complete task in state {self.status.value}")
        self.status = TaskStatus.DONE

    def fail(self, cause: str) -> None:
        if self.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(f"Cannot fail task in state {self.status.value}")
        self.status = TaskStatus.FAILED
        self.error = cause or "Unknown error"
        # A failed item exposes no partial artifact set.
        self.artifacts = []

    def add_artifact(self, artifact: Artifact) -> None:
        self.artifacts.append(artifact)


@dataclass(frozen=True)
class ItemOutcome:
    item: InputItem
    status: TaskStatus
    artifacts: tuple[Artifact, ...] = ()
    error: Optional[str] = None

    @classmethod
    def from_task(cls, task: ConversionTask) -> "ItemOutcome":
        return cls(
            item=task.item,
            status=task.status,
            artifacts=tuple(task.artifacts),
            error=task.error,
        )

    def artifact(self, kind: ArtifactKind) -> Optional[Artifact]:
        for a in self.artifacts:
            if a.kind == kind:
                return a
        return None


@dataclass(frozen=True)
class BatchResult:
    """Per-item outcomes in submission order."""

    outcomes: tuple[ItemOutcome, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self):
        return iter(self.outcomes)

    def __getitem__(self, index: int) -> ItemOutcome:
        return self.outcomes[index]

    @property
    def failed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == TaskStatus.FAILED]
