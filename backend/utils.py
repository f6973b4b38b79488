import logging
import os
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config

from errors import UpstreamStorageError

logger = logging.getLogger(__name__)

AWS_REGION = os.environ.get("AWS_REGION")
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
S3_ACCESS_KEY = os.environ.get("S3_ACCESS_KEY") or os.environ.get("AWS_ACCESS_KEY_ID")
S3_SECRET_KEY = os.environ.get("S3_SECRET_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY")
S3_KEY_ROOT = os.environ.get("S3_KEY_ROOT", "esplendidez")

S3_CLIENT = None
if AWS_REGION and S3_BUCKET_NAME and S3_ACCESS_KEY and S3_SECRET_KEY:
    s3_config = Config(signature_version="s3v4", s3={"addressing_style": "virtual"})
    S3_CLIENT = boto3.client(
        "s3",
        region_name=AWS_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=f"https://s3.{AWS_REGION}.amazonaws.com",
        config=s3_config,
    )


def s3_configured() -> bool:
    return bool(S3_CLIENT and S3_BUCKET_NAME and AWS_REGION)


def _build_s3_url(key: str) -> str:
    if not S3_BUCKET_NAME or not AWS_REGION:
        raise RuntimeError("S3 configuration missing")
    return f"https://{S3_BUCKET_NAME}.s3.{AWS_REGION}.amazonaws.com/{key}"


def _extract_s3_key_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    parsed = urlparse(url)
    host = (parsed.netloc or "").lower()
    path = (parsed.path or "").lstrip("/")
    if not host or not path or not S3_BUCKET_NAME:
        return None

    bucket = S3_BUCKET_NAME.lower()
    if host == f"{bucket}.s3.amazonaws.com" or host.startswith(f"{bucket}.s3."):
        return unquote(path)
    return None


def _upload_bytes_to_s3(data: bytes, key_prefix: str, filename: str, content_type: str = "application/octet-stream") -> str:
    if not s3_configured():
        raise UpstreamStorageError("S3 not configured")

    extension = Path(filename or "").suffix.lower()
    unique_name = f"{uuid.uuid4().hex}{extension}"
    key = f"{S3_KEY_ROOT}/{key_prefix.strip('/')}/{unique_name}"

    try:
        S3_CLIENT.put_object(
            Bucket=S3_BUCKET_NAME,
            Key=key,
            Body=data,
            ContentType=content_type
        )
    except Exception as exc:
        logger.error(f"S3 upload failed: {exc}")
        raise UpstreamStorageError() from exc

    return _build_s3_url(key)


def _delete_s3_object_for_url(url: Optional[str]) -> bool:
    key = _extract_s3_key_from_url(url)
    if not key or not s3_configured():
        return False
    try:
        S3_CLIENT.delete_object(Bucket=S3_BUCKET_NAME, Key=key)
    except Exception as exc:
        logger.warning(f"S3 delete failed for {key}: {exc}")
        return False
    return True
