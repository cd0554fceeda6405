"""Filename sanitizing for output artifacts."""
import hashlib
import re
import unicodedata
from pathlib import PurePosixPath

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_MEANINGFUL = re.compile(r"[A-Za-z0-9]")
MAX_BASE_LENGTH = 100


def repair_transport_name(name: str) -> str:
    """Undo UTF-8 text that arrived mis-decoded as latin-1 ("CafÃ©.png" -> "Café.png").

    Names that do not round-trip are returned unchanged.
    """
    try:
        repaired = name.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name
    return repaired


def _stem(name: str) -> str:
    # Client names may carry either separator; keep only the last component.
    last = name.replace("\\", "/").rsplit("/", 1)[-1]
    path = PurePosixPath(last)
    return path.stem if path.suffix else last


def sanitize(original_name: str) -> str:
    """Return a safe, deterministic base id for a user supplied filename.

    The extension is dropped, diacritics are stripped and anything outside
    ``[A-Za-z0-9._-]`` becomes ``_``. Names left without a single letter or digit
    fall back to ``file_<hash>`` so the result is never empty. Uniqueness is not
    guaranteed; see OutputRegistry.allocate.
    """
    decomposed = unicodedata.normalize("NFKD", _stem(original_name or ""))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    # No leading dots: outputs must not become hidden files.
    base = _UNSAFE.sub("_", stripped).lstrip(".")[:MAX_BASE_LENGTH]
    if not _MEANINGFUL.search(base):
        digest = hashlib.sha1((original_name or "").encode("utf-8", "surrogatepass")).hexdigest()
        return f"file_{digest[:8]}"
    return base
