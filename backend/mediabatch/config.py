"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Scratch paths (override with env). Created and wiped by ScratchSpace.prepare() at startup.
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "processed")))

# Public prefix under which produced artifacts are addressed
PROCESSED_URL_PREFIX = "/processed"

# Supported inputs
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".avif"}
AUDIO_EXTENSIONS = {".wav", ".wave", ".mp3", ".flac", ".ogg", ".m4a", ".aac"}

# Image options
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "80"))
MAX_DIMENSION = int(os.getenv("MAX_DIMENSION", "16384"))
PLACEHOLDER_WIDTH = int(os.getenv("PLACEHOLDER_WIDTH", "20"))
PLACEHOLDER_QUALITY = int(os.getenv("PLACEHOLDER_QUALITY", "20"))
PLACEHOLDER_BLUR_RADIUS = float(os.getenv("PLACEHOLDER_BLUR_RADIUS", "2"))

# Audio options
AUDIO_BITRATES = ("128k", "192k", "320k")
DEFAULT_BITRATE = "192k"
DEFAULT_CHANNELS = "stereo"
MIN_SPEED = 0.5
MAX_SPEED = 1.5
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")

# Concurrency
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))
ITEM_TIMEOUT_SECONDS = float(os.getenv("ITEM_TIMEOUT_SECONDS", "300"))

# Limits (env)
MAX_FILES_PER_BATCH = int(os.getenv("MAX_FILES_PER_BATCH", "50"))
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "20"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024
MAX_AUDIO_SIZE_MB = int(os.getenv("MAX_AUDIO_SIZE_MB", "100"))
MAX_AUDIO_SIZE_BYTES = MAX_AUDIO_SIZE_MB * 1024 * 1024

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "4000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("mediabatch")
