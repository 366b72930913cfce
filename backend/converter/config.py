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

# Supported formats
JPEG_MEDIA_TYPES = {"image/jpeg", "image/jpg"}
PDF_MEDIA_TYPE = "application/pdf"
ACCEPTED_MEDIA_TYPES = {
    t.strip().lower()
    for t in os.getenv("ACCEPTED_MEDIA_TYPES", "image/jpeg,image/jpg,application/pdf").split(",")
    if t.strip()
}

# Image -> PDF: page width in mm (A4), height follows the image aspect ratio
PAGE_WIDTH_MM = float(os.getenv("PAGE_WIDTH_MM", "210"))
DOCUMENT_IMAGE_QUALITY = int(os.getenv("DOCUMENT_IMAGE_QUALITY", "95"))

# PDF -> image: fixed canvas, first page rendered at RASTER_DPI and fitted inside
RASTER_CANVAS = tuple(int(v) for v in os.getenv("RASTER_CANVAS", "800x600").lower().split("x", 1))
RASTER_DPI = int(os.getenv("RASTER_DPI", "150"))
RASTER_BACKGROUND = os.getenv("RASTER_BACKGROUND", "#ffffff")
JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "90"))

# Simulated progress while a conversion runs
PROGRESS_TICK_SECONDS = float(os.getenv("PROGRESS_TICK_SECONDS", "0.2"))
PROGRESS_STEP = int(os.getenv("PROGRESS_STEP", "10"))
PROGRESS_CAP = int(os.getenv("PROGRESS_CAP", "90"))
AUTO_DOWNLOAD_DELAY_SECONDS = float(os.getenv("AUTO_DOWNLOAD_DELAY_SECONDS", "1.0"))

# Limits (env). 0 disables the limit.
CONVERSION_TIMEOUT_SECONDS = float(os.getenv("CONVERSION_TIMEOUT_SECONDS", "120"))
MAX_QUEUE_ITEMS = int(os.getenv("MAX_QUEUE_ITEMS", "0"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "0"))
MAX_FILES_PER_UPLOAD = int(os.getenv("MAX_FILES_PER_UPLOAD", "20"))
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "50"))
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
NOTIFICATION_HISTORY = int(os.getenv("NOTIFICATION_HISTORY", "100"))

# Sessions idle this long are closed and their outputs released. 0 keeps them forever.
SESSION_IDLE_SECONDS = float(os.getenv("SESSION_IDLE_SECONDS", "3600"))
SESSION_SWEEP_SECONDS = float(os.getenv("SESSION_SWEEP_SECONDS", "60"))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")
