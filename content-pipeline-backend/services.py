"""
Service classes for the Content Pipeline Backend.
Contains the uploader, media processor, derivative generator and webhook notifier.
"""

import os
import re
import json
import socket
import tempfile
import ipaddress
import shutil
import hashlib
import logging
import subprocess
from typing import Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import ffmpeg
import requests
from fastapi import HTTPException

from config import (
    ALLOWED_EXTENSIONS,
    DERIVATIVE_FORMATS,
    DERIVATIVE_PROFILES,
    DERIVATIVES_DIR,
    DOWNLOAD_TIMEOUT,
    FFMPEG_TIMEOUT,
    IMAGE_QUALITY,
    MAX_UPLOAD_BYTES,
    OPTIMIZED_FORMATS,
    PREVIEW_HEIGHT,
    THUMBNAIL_OFFSET,
    THUMBNAIL_WIDTH,
    UPLOAD_CHUNK_SIZE,
    UPLOAD_DIR,
    WEBHOOK_TIMEOUT,
    WEBHOOK_URL,
)

# Ensure directories exist
os.makedirs(UPLOAD_DIR, exist_ok=True)
os.makedirs(DERIVATIVES_DIR, exist_ok=True)


class ProcessingError(Exception):
    """Raised when probing or transcoding a file fails."""


def describe_error(error: Exception) -> str:
    """Short, human readable text for an error stored on a content item."""
    detail = getattr(error, "detail", None)
    return str(detail) if detail else (str(error) or error.__class__.__name__)


class UploadValidator:
    """Validates an incoming filename and works out what kind of content it is."""

    def __init__(self, filename: Optional[str], content_type: Optional[str] = None):
        self.raw_filename = filename or ""
        self.content_type = content_type
        self.filename = ""
        self.kind = ""

    def _sanitize(self):
        # Browsers on Windows send full paths
        name = os.path.basename(self.raw_filename.replace("\\", "/")).strip()
        name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
        self.filename = name

    def _resolve_kind(self):
        extension = os.path.splitext(self.filename)[1].lower()
        kind = ALLOWED_EXTENSIONS.get(extension)
        if kind is None:
            allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
            raise HTTPException(
                status_code=415,
                detail=f"Unsupported file type '{extension or self.filename}'. Allowed: {allowed}",
            )
        self.kind = kind

    def _check_content_type(self):
        # Generic types such as application/octet-stream say nothing about the kind
        major = (self.content_type or "").split("/", 1)[0].strip().lower()
        if major in ("video", "audio", "image") and major != self.kind:
            raise HTTPException(
                status_code=415,
                detail=f"Content type '{self.content_type}' does not match a {self.kind} file '{self.filename}'.",
            )

    def run(self) -> Tuple[str, str]:
        self._sanitize()
        if not self.filename or not os.path.splitext(self.filename)[0]:
            raise HTTPException(status_code=400, detail="A filename is required.")
        self._resolve_kind()
        self._check_content_type()
        return self.filename, self.kind


class Uploader:
    """Streams content into storage, measuring and hashing it on the way."""

    def __init__(self, content_id: str, filename: str):
        self.content_id = content_id
        self.path = os.path.join(UPLOAD_DIR, f"{content_id}_{filename}")
        self.size_bytes = 0
        self.checksum = ""

    def discard(self):
        try:
            if os.path.exists(self.path):
                os.remove(self.path)
        except OSError as e:
            logging.warning(f"Could not delete partial upload {self.path}: {e}")

    def write_chunks(self, chunks: Iterable[bytes]) -> str:
        digest = hashlib.sha256()
        size = 0
        try:
            with open(self.path, "wb") as buffer:
                for chunk in chunks:
                    if not chunk:
                        continue
                    size += len(chunk)
                    if size > MAX_UPLOAD_BYTES:
                        raise HTTPException(
                            status_code=413,
                            detail=f"Upload exceeds the {MAX_UPLOAD_BYTES} byte limit.",
                        )
                    digest.update(chunk)
                    buffer.write(chunk)
            if size == 0:
                raise HTTPException(status_code=400, detail="Uploaded file is empty.")
        except BaseException:
            self.discard()
            raise

        self.size_bytes = size
        self.checksum = digest.hexdigest()
        logging.info(f"📥 Stored {size} bytes for content {self.content_id} at {self.path}")
        return self.path

    def save(self, fileobj) -> str:
        return self.write_chunks(iter(lambda: fileobj.read(UPLOAD_CHUNK_SIZE), b""))


def ensure_public_url(url: str, resolve: bool = True):
    """
    Refuses URLs that point at loopback, private, link-local or otherwise
    non-public addresses. IP literals are always checked; host names are
    only looked up when `resolve` is set.
    """
    host = (urlparse(url).hostname or "").lower()
    if not host or host == "localhost" or host.endswith(".localhost"):
        raise HTTPException(status_code=400, detail=f"Refusing to fetch from host '{host}'.")

    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        if not resolve:
            return
        try:
            infos = socket.getaddrinfo(host, None)
        except socket.gaierror as e:
            raise HTTPException(status_code=502, detail=f"Could not resolve {host}: {e}")
        addresses = [info[4][0] for info in infos]

    for address in addresses:
        if not ipaddress.ip_address(address.split("%", 1)[0]).is_global:
            raise HTTPException(
                status_code=400,
                detail=f"Refusing to fetch from non-public address {address}.",
            )


class RemoteFetcher:
    """Downloads remote content over HTTP(S) into an Uploader."""

    def __init__(self, url: str):
        self.url = url

    @staticmethod
    def filename_from_url(url: str) -> str:
        return unquote(os.path.basename(urlparse(url).path))

    def fetch_to(self, uploader: Uploader) -> str:
        ensure_public_url(self.url)
        logging.info(f"🌐 Fetching {self.url}")
        try:
            with requests.get(self.url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                return uploader.write_chunks(response.iter_content(chunk_size=UPLOAD_CHUNK_SIZE))
        except requests.RequestException as e:
            raise HTTPException(status_code=502, detail=f"Could not download {self.url}: {e}")


def _run_tool(command: List[str], description: str) -> subprocess.CompletedProcess:
    """Runs ffmpeg or ffprobe with a timeout, turning every failure into a ProcessingError."""
    tool = command[0]
    try:
        return subprocess.run(command, capture_output=True, text=True, timeout=FFMPEG_TIMEOUT, check=True)
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.strip() if e.stderr else ""
        last_line = stderr.splitlines()[-1] if stderr else f"Unknown {tool} error"
        logging.error(f"❌ {tool} {description} failed. Stderr:\n{stderr}")
        raise ProcessingError(f"{tool} {description} failed: {last_line}")
    except subprocess.TimeoutExpired:
        raise ProcessingError(f"{tool} {description} timed out after {FFMPEG_TIMEOUT} seconds")
    except FileNotFoundError:
        raise ProcessingError(f"{tool} is not installed on this worker")


def run_ffmpeg(stream, description: str):
    """Runs a compiled ffmpeg-python stream with a timeout."""
    command = stream.overwrite_output().compile()
    logging.info(f"🎬 Running ffmpeg ({description}): {' '.join(command)}")
    _run_tool(command, description)


class MediaProcessor:
    """Probes an uploaded file and transcodes it into its optimized form."""

    def __init__(self, path: str, kind: str):
        self.path = path
        self.kind = kind

    def probe(self) -> dict:
        # Same flags ffmpeg.probe() uses, run through _run_tool so the timeout applies
        command = ["ffprobe", "-v", "error", "-show_format", "-show_streams", "-of", "json", self.path]
        result = _run_tool(command, "read media file")
        try:
            data = json.loads(result.stdout or "{}")
        except ValueError as e:
            raise ProcessingError(f"ffprobe returned unreadable output: {e}")

        fmt = data.get("format", {})
        streams = data.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

        if self.kind in ("video", "image") and video is None:
            raise ProcessingError(f"No video stream found in {self.kind} file")
        if self.kind == "audio" and audio is None:
            raise ProcessingError("No audio stream found in audio file")

        primary = video if self.kind != "audio" else audio
        return {
            "format": fmt.get("format_name"),
            "duration": float(fmt["duration"]) if fmt.get("duration") else None,
            "bit_rate": int(fmt["bit_rate"]) if fmt.get("bit_rate") else None,
            "codec": primary.get("codec_name"),
            "width": video.get("width") if video else None,
            "height": video.get("height") if video else None,
            "has_audio": audio is not None,
        }

    def _optimize_stream(self, output_path: str):
        source = ffmpeg.input(self.path)
        if self.kind == "video":
            return source.output(
                output_path,
                vcodec="libx264",
                crf=23,
                preset="fast",
                pix_fmt="yuv420p",
                acodec="aac",
                movflags="+faststart",
            )
        if self.kind == "audio":
            return source.audio.output(output_path, acodec="aac", audio_bitrate="192k")
        return source.output(output_path, vframes=1, **{"q:v": IMAGE_QUALITY})

    def optimize(self, output_dir: str) -> Tuple[str, str]:
        extension, mime_type = OPTIMIZED_FORMATS[self.kind]
        os.makedirs(output_dir, exist_ok=True)
        output_path = os.path.join(output_dir, f"optimized{extension}")
        run_ffmpeg(self._optimize_stream(output_path), f"optimize {self.kind}")
        return output_path, mime_type


class DerivativeGenerator:
    """Produces the derivative artifacts for a processed content item."""

    def __init__(self, source_path: str, kind: str, output_dir: str, media_info: Optional[dict] = None):
        self.source_path = source_path
        self.kind = kind
        self.output_dir = output_dir
        self.media_info = media_info or {}

    def _thumbnail_offset(self) -> float:
        duration = self.media_info.get("duration")
        if duration:
            return min(THUMBNAIL_OFFSET, duration / 2)
        return 0.0

    def _stream_for(self, derivative: str, output_path: str):
        if derivative == "thumbnail":
            if self.kind == "video":
                source = ffmpeg.input(self.source_path, ss=self._thumbnail_offset())
            else:
                source = ffmpeg.input(self.source_path)
            return source.video.filter("scale", THUMBNAIL_WIDTH, -1).output(output_path, vframes=1)
        if derivative == "preview":
            return (
                ffmpeg.input(self.source_path)
                .video.filter("scale", -2, PREVIEW_HEIGHT)
                .output(output_path, vcodec="libx264", crf=28, preset="veryfast", pix_fmt="yuv420p", movflags="+faststart")
            )
        if derivative == "waveform":
            return (
                ffmpeg.input(self.source_path)
                .audio.filter("showwavespic", s="640x120")
                .output(output_path, vframes=1)
            )
        raise ProcessingError(f"Unknown derivative '{derivative}'")

    def run(self) -> List[Tuple[str, str, str]]:
        os.makedirs(self.output_dir, exist_ok=True)
        produced = []
        for derivative in DERIVATIVE_PROFILES.get(self.kind, []):
            extension, mime_type = DERIVATIVE_FORMATS[derivative]
            output_path = os.path.join(self.output_dir, f"{derivative}{extension}")
            run_ffmpeg(self._stream_for(derivative, output_path), derivative)
            produced.append((derivative, output_path, mime_type))
        return produced


class WebhookNotifier:
    """Tells an external system that a content item reached a terminal status."""

    def __init__(self, url: Optional[str] = None):
        self.url = url if url is not None else WEBHOOK_URL

    def notify(self, content_id: str, status: str, error: Optional[str] = None) -> bool:
        if not self.url:
            return False
        payload = {"content_id": content_id, "status": status, "error": error}
        try:
            response = requests.post(self.url, json=payload, timeout=WEBHOOK_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            logging.warning(f"Webhook for content {content_id} failed: {e}")
            return False
        return True


def derivatives_dir_for(content_id: str) -> str:
    return os.path.join(DERIVATIVES_DIR, content_id)


def staging_dir_for(content_id: str) -> str:
    """A fresh working directory for one processing attempt."""
    os.makedirs(DERIVATIVES_DIR, exist_ok=True)
    return tempfile.mkdtemp(prefix=f"{content_id}.", dir=DERIVATIVES_DIR)


def publish_staging_dir(content_id: str, staging_dir: str) -> str:
    """Replaces the published derivatives of an item with a finished attempt."""
    final_dir = derivatives_dir_for(content_id)
    shutil.rmtree(final_dir, ignore_errors=True)
    os.replace(staging_dir, final_dir)
    return final_dir


def remove_content_files(content_id: str, storage_path: Optional[str]):
    """Deletes the stored original and every derivative of a content item."""
    try:
        if storage_path and os.path.exists(storage_path):
            os.remove(storage_path)
        shutil.rmtree(derivatives_dir_for(content_id), ignore_errors=True)
    except OSError as e:
        logging.warning(f"Could not delete files for content {content_id}: {e}")
