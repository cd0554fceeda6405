"""Exceptions raised by the conversion core."""


class MediaBatchError(Exception):
    """Base class for all service errors."""


class RegistryCollisionError(MediaBatchError):
    """A virtual path was registered twice. Indicates a naming bug, never user error."""

    def __init__(self, virtual_path: str):
        super().__init__(f"Virtual path already registered: {virtual_path}")
        self.virtual_path = virtual_path


class InvalidTransitionError(MediaBatchError):
    """A conversion task was moved between states in an order the state machine forbids."""


class CodecError(MediaBatchError):
    """An image or audio collaborator failed to produce output."""


class ItemTimeoutError(CodecError):
    """A task exceeded its per-item deadline."""

    def __init__(self, seconds: float):
        super().__init__(f"Conversion timed out after {seconds:g} s")
        self.seconds = seconds


class EmptyArchiveRequestError(MediaBatchError):
    """An archive was requested for an empty list of references."""


class NoValidArtifactsError(MediaBatchError):
    """None of the references of an archive request resolve to a registered artifact."""
