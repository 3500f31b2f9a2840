"""
Configuration file for the Content Pipeline Backend.
Contains all global constants, read from the environment where deployments differ.
"""

import os

# --- Constants ---
PROJECT_ROOT = os.getcwd()
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(PROJECT_ROOT, 'content_pipeline.db')}")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

MEDIA_DIR = os.getenv("MEDIA_DIR", os.path.join(PROJECT_ROOT, "media"))
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(MEDIA_DIR, "uploads"))
DERIVATIVES_DIR = os.getenv("DERIVATIVES_DIR", os.path.join(MEDIA_DIR, "derivatives"))

API_PREFIX = "/api/v1"
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# --- Upload limits ---
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(500 * 1024 * 1024)))
UPLOAD_CHUNK_SIZE = int(os.getenv("UPLOAD_CHUNK_SIZE", str(1024 * 1024)))
DOWNLOAD_TIMEOUT = int(os.getenv("DOWNLOAD_TIMEOUT", "60"))

# --- Processing ---
FFMPEG_TIMEOUT = int(os.getenv("FFMPEG_TIMEOUT", "600"))
THUMBNAIL_WIDTH = 320
THUMBNAIL_OFFSET = 1.0  # seconds into a video
PREVIEW_HEIGHT = 480
IMAGE_QUALITY = 3  # ffmpeg -q:v, 2 (best) .. 31 (worst)

# --- Notifications ---
WEBHOOK_URL = os.getenv("WEBHOOK_URL") or None
WEBHOOK_TIMEOUT = int(os.getenv("WEBHOOK_TIMEOUT", "10"))

# --- Content kinds ---

ALLOWED_EXTENSIONS = {
    ".mp4": "video",
    ".mov": "video",
    ".mkv": "video",
    ".webm": "video",
    ".avi": "video",
    ".mp3": "audio",
    ".wav": "audio",
    ".m4a": "audio",
    ".flac": "audio",
    ".ogg": "audio",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".webp": "image",
    ".gif": "image",
}

# Derivatives generated for each kind, in addition to the optimized file.
DERIVATIVE_PROFILES = {
    "video": ["thumbnail", "preview"],
    "audio": ["waveform"],
    "image": ["thumbnail"],
}

OPTIMIZED_FORMATS = {
    "video": (".mp4", "video/mp4"),
    "audio": (".m4a", "audio/mp4"),
    "image": (".jpg", "image/jpeg"),
}

DERIVATIVE_FORMATS = {
    "thumbnail": (".jpg", "image/jpeg"),
    "preview": (".mp4", "video/mp4"),
    "waveform": (".png", "image/png"),
}
