import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"

# (filename, content, content_type)
FileTuple = Tuple[str, bytes, str]


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class RegistrationApiClient:
    """Thin wrapper over the registration HTTP API.

    ``session`` only needs a requests-style ``request(method, url, **kwargs)``;
    anything from ``requests.Session`` to a Starlette ``TestClient`` works.
    """

    def __init__(self, base_url: Optional[str] = None, session=None, timeout: float = 30, admin_token: Optional[str] = None):
        self.base_url = (base_url or os.environ.get("FEST_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.admin_token = admin_token or os.environ.get("FEST_ADMIN_TOKEN")

    def _request(self, method: str, endpoint: str, admin: bool = False, raw: bool = False, **kwargs):
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if admin:
            headers = dict(kwargs.pop("headers", None) or {})
            headers["X-Admin-Token"] = self.admin_token or ""
            kwargs["headers"] = headers

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(0, f"Could not reach the registration server: {exc}") from exc

        if raw and response.status_code < 400:
            return response.content

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            message = payload.get("message") or f"Request failed with status {response.status_code}"
            logger.debug("%s %s -> %s %s", method, url, response.status_code, message)
            raise ApiError(response.status_code, message, payload)
        return payload

    def health(self) -> dict:
        return self._request("GET", "health")

    def register(self, fields: Dict[str, Any], id_proof: FileTuple, payment_screenshot: Optional[FileTuple] = None) -> dict:
        form = {}
        for key, value in fields.items():
            if value is None:
                continue
            if key == "teamMembers" and not isinstance(value, str):
                value = json.dumps(value)
            form[key] = str(value)

        files = {"collegeIdProof": id_proof}
        if payment_screenshot:
            files["paymentScreenshot"] = payment_screenshot
        return self._request("POST", "registration/register", data=form, files=files)["data"]

    def get_registration(self, registration_id: str) -> dict:
        return self._request("GET", f"registration/{registration_id}")["data"]

    def list_registrations(self, category: Optional[str] = None, event: Optional[str] = None) -> list:
        params = {k: v for k, v in (("category", category), ("event", event)) if v}
        return self._request("GET", "registration/all", params=params)["data"]

    def check_utr(self, utr: str) -> bool:
        return self._request("GET", f"registration/utr/{utr}")["available"]

    def verify_payment(self, registration_id: str, utr: str) -> dict:
        body = {"registrationId": registration_id, "utrNumber": utr}
        return self._request("POST", "payment/verify", json=body)["data"]

    def stats(self) -> dict:
        return self._request("GET", "admin/stats", admin=True)["data"]

    def update_payment_status(self, registration_id: str, status: str) -> dict:
        body = {"registrationId": registration_id, "status": status}
        return self._request("PATCH", "admin/payment-status", admin=True, json=body)["data"]

    def bulk_update_payment_status(self, category: str, status: str) -> int:
        body = {"category": category, "status": status}
        return self._request("PATCH", "admin/bulk-payment-status", admin=True, json=body)["data"]["modified"]

    def export(self, format: str = "csv", category: Optional[str] = None) -> bytes:
        params = {"format": format}
        if category:
            params["category"] = category
        return self._request("GET", "admin/export", admin=True, raw=True, params=params)
