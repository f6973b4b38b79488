"""Attachment intake: validation, image recompression and storage.

Uploads are checked against the MIME allow-list and the size ceiling before
anything is written. Images are re-encoded to JPEG (auto-oriented, fit inside
1600x1600, quality 72); if re-encoding fails the original bytes are kept.
Files land either on local disk under ``UPLOAD_DIR`` (served at ``/uploads``)
or in the S3 bucket configured in ``utils``.
"""
import io
import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Union

from fastapi import UploadFile
from PIL import Image, ImageOps

from errors import UpstreamStorageError, ValidationError
from utils import _delete_s3_object_for_url, _upload_bytes_to_s3, s3_configured

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", str(ROOT_DIR / "uploads")))
UPLOAD_URL_PREFIX = "/uploads"

ALLOWED_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/gif",
    "application/pdf",
}
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", int(4.5 * 1024 * 1024)))

IMAGE_MAX_DIMENSION = 1600
IMAGE_JPEG_QUALITY = 72


def storage_backend() -> str:
    backend = os.environ.get("STORAGE_BACKEND", "").strip().lower()
    if backend in ("local", "s3"):
        return backend
    return "s3" if s3_configured() else "local"


def is_image(mimetype: Optional[str]) -> bool:
    return bool(mimetype) and mimetype.lower().startswith("image/")


def _format_limit(limit: int) -> str:
    return f"{limit / (1024 * 1024):.1f}MB"


def read_upload(upload: UploadFile, label: str) -> bytes:
    mimetype = (upload.content_type or "").lower()
    if mimetype not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"{label}: only images (png, jpg, jpeg, webp, gif) or PDF files are allowed")

    data = upload.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"{label}: file too large, maximum size is {_format_limit(MAX_UPLOAD_BYTES)}")
    if not data:
        raise ValidationError(f"{label}: file is empty")
    return data


def compress_image(source: Union[bytes, str, Path]) -> bytes:
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    with Image.open(source) as image:
        image = ImageOps.exif_transpose(image)
        if image.mode != "RGB":
            image = image.convert("RGB")
        # thumbnail() only ever shrinks
        image.thumbnail((IMAGE_MAX_DIMENSION, IMAGE_MAX_DIMENSION), Image.LANCZOS)
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=IMAGE_JPEG_QUALITY, optimize=True)
        return output.getvalue()


def _safe_extension(filename: Optional[str]) -> str:
    extension = Path(filename or "").suffix.lower()
    return extension if 0 < len(extension) <= 8 else ""


def _attachment_meta(filename: str, original_name: str, path: str, size: int, mimetype: str) -> dict:
    return {
        "filename": filename,
        "originalName": original_name,
        "path": path,
        "size": size,
        "mimetype": mimetype,
    }


def _store_local(data: bytes, original_name: str, mimetype: str) -> dict:
    try:
        UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        filename = f"{uuid.uuid4().hex}{_safe_extension(original_name)}"
        stored_path = UPLOAD_DIR / filename
        stored_path.write_bytes(data)
    except OSError as exc:
        logger.error(f"Writing upload to {UPLOAD_DIR} failed: {exc}")
        raise UpstreamStorageError() from exc

    size = len(data)
    if is_image(mimetype):
        jpeg_name = f"{stored_path.stem}.jpg"
        jpeg_path = UPLOAD_DIR / jpeg_name
        try:
            compressed = compress_image(stored_path)
            jpeg_path.write_bytes(compressed)
        except Exception as exc:
            logger.warning(f"Image recompression failed for {original_name!r}, keeping original: {exc}")
        else:
            if jpeg_path != stored_path:
                try:
                    stored_path.unlink()
                except OSError as exc:
                    logger.warning(f"Could not remove pre-compression file {stored_path}: {exc}")
            filename, size, mimetype = jpeg_name, len(compressed), "image/jpeg"

    return _attachment_meta(filename, original_name, f"{UPLOAD_URL_PREFIX}/{filename}", size, mimetype)


def _store_remote(data: bytes, original_name: str, mimetype: str, folder: str) -> dict:
    upload_name = original_name
    if is_image(mimetype):
        try:
            data = compress_image(data)
            mimetype = "image/jpeg"
            upload_name = f"{Path(original_name or 'upload').stem}.jpg"
        except Exception as exc:
            logger.warning(f"Image recompression failed for {original_name!r}, uploading original: {exc}")

    url = _upload_bytes_to_s3(data, folder, upload_name, content_type=mimetype)
    return _attachment_meta(url.rsplit("/", 1)[-1], original_name, url, len(data), mimetype)


def store_attachment(upload: UploadFile, folder: str, data: Optional[bytes] = None, label: str = "File") -> dict:
    """Validate and persist one upload, returning its attachment metadata."""
    if data is None:
        data = read_upload(upload, label)
    original_name = upload.filename or "upload"
    mimetype = (upload.content_type or "application/octet-stream").lower()
    if storage_backend() == "s3":
        return _store_remote(data, original_name, mimetype, folder)
    return _store_local(data, original_name, mimetype)


def discard_attachment(meta: Optional[dict]) -> None:
    if not meta:
        return
    path = meta.get("path") or ""
    if path.startswith("http://") or path.startswith("https://"):
        _delete_s3_object_for_url(path)
        return
    filename = meta.get("filename")
    if not filename:
        return
    try:
        (UPLOAD_DIR / filename).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"Could not remove orphaned upload {filename}: {exc}")
