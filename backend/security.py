import os
import secrets
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Header

from errors import AuthError

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

DEFAULT_VERIFIER = "admin"


def _admin_password() -> str:
    return os.environ.get("ADMIN_PASSWORD", "esplendidez2026")


def require_admin(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    x_admin_name: Optional[str] = Header(None, alias="X-Admin-Name"),
) -> str:
    """Shared-password admin gate; returns the verifier label for audit columns."""
    if not x_admin_token or not secrets.compare_digest(x_admin_token.encode("utf-8"), _admin_password().encode("utf-8")):
        raise AuthError()
    name = (x_admin_name or "").strip()
    return name[:255] or DEFAULT_VERIFIER
