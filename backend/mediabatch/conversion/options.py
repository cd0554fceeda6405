"""Resolve the client's per-file option payload into validated conversion configs."""
import json
import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional

from mediabatch.config import (
    AUDIO_BITRATES,
    DEFAULT_BITRATE,
    DEFAULT_CHANNELS,
    DEFAULT_QUALITY,
    MAX_DIMENSION,
    MAX_SPEED,
    MIN_SPEED,
)
from mediabatch.conversion.models import AudioConfig, ConversionConfig, ImageConfig, InputItem, MediaKind

logger = logging.getLogger("mediabatch.options")

_CHANNEL_ALIASES = {"mono": "mono", "1": "mono", "stereo": "stereo", "2": "stereo"}


def parse_mapping(raw: Any) -> Optional[Mapping]:
    """Return raw as a mapping, decoding JSON text if needed. None if it is not one."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    return raw if isinstance(raw, Mapping) else None


def _safe_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(round(number))


def _safe_float(value: Any, default: float, min_v: float, max_v: float) -> float:
    """Parse float from form input, clamp to valid range, never raise."""
    if isinstance(value, bool):
        return default
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if v != v:
        return default
    return max(min_v, min(max_v, v))


def _dimension(value: Any) -> Optional[int]:
    n = _safe_int(value)
    if n is None or not 1 <= n <= MAX_DIMENSION:
        return None
    return n


def resolve_image_config(raw: Optional[Mapping]) -> ImageConfig:
    if not raw:
        return ImageConfig(quality=DEFAULT_QUALITY)
    quality = _safe_int(raw.get("quality"))
    quality = DEFAULT_QUALITY if quality is None else max(1, min(100, quality))
    return ImageConfig(
        width=_dimension(raw.get("width")),
        height=_dimension(raw.get("height")),
        quality=quality,
    )


def _bitrate(value: Any) -> str:
    text = str(value).strip().lower() if value is not None else ""
    if text.isdigit():
        text = f"{text}k"
    return text if text in AUDIO_BITRATES else DEFAULT_BITRATE


def _channels(value: Any) -> str:
    text = str(value).strip().lower() if value is not None else ""
    return _CHANNEL_ALIASES.get(text, DEFAULT_CHANNELS)


def resolve_audio_config(raw: Optional[Mapping]) -> AudioConfig:
    if not raw:
        return AudioConfig(bitrate=DEFAULT_BITRATE, channels=DEFAULT_CHANNELS, speed=1.0)
    return AudioConfig(
        bitrate=_bitrate(raw.get("bitrate")),
        channels=_channels(raw.get("channels")),
        speed=_safe_float(raw.get("speed"), 1.0, MIN_SPEED, MAX_SPEED),
    )


def resolve_configs(payload: Any, items: Iterable[InputItem]) -> dict[str, ConversionConfig]:
    """Map each item's id to its config.

    payload maps original filename -> option record (dict or JSON text) and may
    itself be JSON text. Unusable entries count as absent; items without an
    entry get defaults. Never raises on bad input.
    """
    options = parse_mapping(payload) if payload is not None else None
    if payload is not None and options is None:
        logger.warning("Ignoring malformed options payload")
    options = options or {}

    configs: dict[str, ConversionConfig] = {}
    for item in items:
        raw = options.get(item.original_name)
        record = parse_mapping(raw) if raw is not None else None
        if raw is not None and record is None:
            logger.warning("Ignoring malformed options for %s", item.original_name)
        if item.kind == MediaKind.IMAGE:
            configs[item.item_id] = resolve_image_config(record)
        else:
            configs[item.item_id] = resolve_audio_config(record)
    return configs
