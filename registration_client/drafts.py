"""Draft registrations held on the participant's side between the
registration step and the payment step.

A draft is written to three tiers when the form is submitted:

* the durable local store (SQLite file) keeps the fields *and* the ID-proof
  file;
* the session store (a JSON file in the session directory) keeps only the
  fields of the current draft;
* the payment URL can carry the fields base64-encoded in its ``data``
  parameter.

On the payment step :class:`DraftResolver` asks the recovery providers in
order (URL, local store, session store). A draft with its attachment wins
immediately; a draft without one is only used when no tier can supply the
file, in which case the participant must attach it again before submitting.
Every storage call is bounded by a timeout so a stuck store falls through to
the next tier instead of hanging the flow.
"""
import base64
import json
import logging
import os
import random
import string
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Union
from urllib.parse import parse_qs, urlencode, urlparse

from sqlalchemy import Column, DateTime, JSON, LargeBinary, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = float(os.environ.get("DRAFT_STORAGE_TIMEOUT", 5))
DEFAULT_PAYMENT_PAGE_URL = os.environ.get("FEST_PAYMENT_PAGE_URL", "https://esplendidez.online/payment.html")

DraftBase = declarative_base()


class PendingRegistration(DraftBase):
    __tablename__ = "pending_registrations"

    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False)
    attachment_name = Column(String(255), nullable=True)
    attachment_type = Column(String(100), nullable=True)
    attachment = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DraftState(Enum):
    CREATED = "created"
    RECOVERED = "recovered"
    RECOVERED_WITH_ATTACHMENT = "recovered_with_attachment"
    RECOVERED_NEEDS_REUPLOAD = "recovered_needs_reupload"
    SUBMITTED = "submitted"
    DELETED = "deleted"
    LOST = "lost"


class DraftLost(Exception):
    pass


class ReuploadRequired(Exception):
    pass


class DraftAttachment(NamedTuple):
    filename: str
    content_type: str
    content: bytes

    def as_upload(self):
        return (self.filename, self.content, self.content_type)


class DraftRecord:
    def __init__(self, draft_id: str, data: Dict, attachment: Optional[DraftAttachment] = None):
        self.id = draft_id
        self.data = dict(data or {})
        self.attachment = attachment

    @property
    def is_complete(self) -> bool:
        return bool(self.data) and self.attachment is not None

    def __repr__(self):
        return f"DraftRecord(id={self.id!r}, fields={len(self.data)}, attachment={self.attachment is not None})"


def new_draft_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"REG_{int(time.time() * 1000)}_{suffix}"


def call_with_timeout(fn: Callable, *args, timeout: float = DEFAULT_TIMEOUT, default=None, label: str = "storage call"):
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("%s timed out after %.1fs; falling back", label, timeout)
        return default
    except Exception as exc:
        logger.warning("%s failed: %s; falling back", label, exc)
        return default
    finally:
        executor.shutdown(wait=False)


# --- URL tier -------------------------------------------------------------

def encode_draft_fields(data: Mapping) -> str:
    raw = json.dumps(dict(data), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_draft_fields(encoded: str) -> Optional[Dict]:
    try:
        decoded = json.loads(base64.b64decode(encoded.encode("ascii"), validate=True).decode("utf-8"))
    except ValueError as exc:
        logger.warning("Could not decode draft fields from URL: %s", exc)
        return None
    return decoded if isinstance(decoded, dict) else None


def build_payment_url(base_url: str, record: DraftRecord, embed_fields: bool = True) -> str:
    params = {
        "regId": record.id,
        "email": record.data.get("participantEmail", ""),
        "event": record.data.get("eventName", ""),
    }
    if embed_fields:
        params["data"] = encode_draft_fields(record.data)
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def parse_query(url_or_query: Union[str, Mapping, None]) -> Dict[str, str]:
    if not url_or_query:
        return {}
    if isinstance(url_or_query, Mapping):
        return {k: v for k, v in url_or_query.items() if v}
    query = urlparse(url_or_query).query if "?" in url_or_query or "://" in url_or_query else url_or_query
    return {k: v[0] for k, v in parse_qs(query).items() if v and v[0]}


# --- Stores ---------------------------------------------------------------

class LocalDraftStore:
    """Durable store keeping fields and the attachment bytes per draft id."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(f"sqlite:///{self.path}", connect_args={"check_same_thread": False})
        DraftBase.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=False)

    def put(self, record: DraftRecord) -> bool:
        with self.Session() as db:
            row = db.get(PendingRegistration, record.id) or PendingRegistration(id=record.id)
            row.data = record.data
            if record.attachment is not None:
                row.attachment_name = record.attachment.filename
                row.attachment_type = record.attachment.content_type
                row.attachment = record.attachment.content
            db.add(row)
            db.commit()
        return True

    def get(self, draft_id: Optional[str]) -> Optional[DraftRecord]:
        if not draft_id:
            return None
        with self.Session() as db:
            row = db.get(PendingRegistration, draft_id)
            if not row:
                return None
            attachment = None
            if row.attachment is not None:
                attachment = DraftAttachment(row.attachment_name or "college-id-proof", row.attachment_type or "application/octet-stream", row.attachment)
            return DraftRecord(row.id, row.data, attachment)

    def delete(self, draft_id: str) -> bool:
        with self.Session() as db:
            deleted = db.query(PendingRegistration).filter(PendingRegistration.id == draft_id).delete()
            db.commit()
        return bool(deleted)

    def ids(self) -> List[str]:
        with self.Session() as db:
            return [row.id for row in db.query(PendingRegistration.id).order_by(PendingRegistration.created_at.asc())]


class SessionDraftStore:
    """Short-lived store for the current draft's fields; never holds files."""

    FILENAME = "pending_registration.json"

    def __init__(self, directory: Union[str, Path, None] = None):
        self.directory = Path(directory or Path(tempfile.gettempdir()) / "esplendidez-session")
        self.path = self.directory / self.FILENAME

    def put(self, record: DraftRecord) -> bool:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = {
            "pendingPaymentId": record.id,
            "pendingPaymentEmail": record.data.get("participantEmail"),
            "pendingPaymentEvent": record.data.get("eventName"),
            "pendingRegData": record.data,
        }
        self.path.write_text(json.dumps(payload), encoding="utf-8")
        return True

    def get(self, draft_id: Optional[str] = None) -> Optional[DraftRecord]:
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        stored_id = payload.get("pendingPaymentId")
        data = payload.get("pendingRegData")
        if not data or (draft_id and stored_id != draft_id):
            return None
        return DraftRecord(stored_id, data)

    def current_id(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8")).get("pendingPaymentId")

    def delete(self, draft_id: Optional[str] = None) -> bool:
        if not self.path.exists():
            return False
        if draft_id:
            current = self.get(draft_id)
            if current is None:
                return False
        self.path.unlink()
        return True


# --- Recovery -------------------------------------------------------------

class DraftRecoveryProvider:
    name = "provider"

    def recover(self, draft_id: Optional[str]) -> Optional[DraftRecord]:
        raise NotImplementedError


class UrlDraftProvider(DraftRecoveryProvider):
    name = "url"

    def __init__(self, url_or_query: Union[str, Mapping, None]):
        self.params = parse_query(url_or_query)

    @property
    def draft_id(self) -> Optional[str]:
        return self.params.get("regId") or self.params.get("registration")

    def recover(self, draft_id: Optional[str]) -> Optional[DraftRecord]:
        encoded = self.params.get("data")
        if not encoded:
            return None
        data = decode_draft_fields(encoded)
        if not data:
            return None
        return DraftRecord(draft_id or self.draft_id or data.get("regId") or new_draft_id(), data)


class LocalStoreProvider(DraftRecoveryProvider):
    name = "local"

    def __init__(self, store: LocalDraftStore):
        self.store = store

    def recover(self, draft_id: Optional[str]) -> Optional[DraftRecord]:
        return self.store.get(draft_id)


class SessionStoreProvider(DraftRecoveryProvider):
    name = "session"

    def __init__(self, store: SessionDraftStore):
        self.store = store

    def recover(self, draft_id: Optional[str]) -> Optional[DraftRecord]:
        return self.store.get(draft_id)


class DraftRecovery:
    def __init__(self, state: DraftState, record: Optional[DraftRecord] = None, source: Optional[str] = None):
        self.state = state
        self.record = record
        self.source = source

    @property
    def needs_reupload(self) -> bool:
        return self.state == DraftState.RECOVERED_NEEDS_REUPLOAD

    def __repr__(self):
        return f"DraftRecovery(state={self.state.value}, source={self.source!r}, record={self.record!r})"


class DraftResolver:
    def __init__(self, providers: List[DraftRecoveryProvider], timeout: float = DEFAULT_TIMEOUT):
        self.providers = providers
        self.timeout = timeout

    def resolve(self, draft_id: Optional[str] = None) -> DraftRecovery:
        partial = None
        partial_source = None
        for provider in self.providers:
            wanted = draft_id or (partial.id if partial else None)
            record = call_with_timeout(provider.recover, wanted, timeout=self.timeout, label=f"{provider.name} draft recovery")
            if record is None:
                continue
            if record.is_complete:
                logger.info("Recovered draft %s with attachment from %s store", record.id, provider.name)
                return DraftRecovery(DraftState.RECOVERED_WITH_ATTACHMENT, record, provider.name)
            if partial is None:
                partial, partial_source = record, provider.name

        if partial is not None:
            logger.info("Recovered draft %s from %s store without attachment", partial.id, partial_source)
            return DraftRecovery(DraftState.RECOVERED_NEEDS_REUPLOAD, partial, partial_source)
        logger.warning("No draft recoverable for %s", draft_id or "current session")
        return DraftRecovery(DraftState.LOST)


class DraftCache:
    def __init__(
        self,
        local_store: Optional[LocalDraftStore] = None,
        session_store: Optional[SessionDraftStore] = None,
        timeout: float = DEFAULT_TIMEOUT,
        payment_page_url: str = DEFAULT_PAYMENT_PAGE_URL,
        embed_fields_in_url: bool = True,
    ):
        self.local_store = local_store
        self.session_store = session_store
        self.timeout = timeout
        self.payment_page_url = payment_page_url
        self.embed_fields_in_url = embed_fields_in_url

    def _bounded(self, fn: Callable, *args, label: str, default=None):
        return call_with_timeout(fn, *args, timeout=self.timeout, default=default, label=label)

    def save(self, data: Mapping, attachment: Optional[DraftAttachment] = None) -> DraftRecovery:
        record = DraftRecord(new_draft_id(), dict(data), attachment)
        if self.session_store is not None:
            self._bounded(self.session_store.put, record, label="session draft save", default=False)
        saved_locally = False
        if self.local_store is not None:
            saved_locally = self._bounded(self.local_store.put, record, label="local draft save", default=False)
        if not saved_locally:
            logger.warning("Draft %s not kept in the local store; the ID proof will have to be attached again", record.id)
        return DraftRecovery(DraftState.CREATED, record, "local" if saved_locally else None)

    def payment_url(self, record: DraftRecord) -> str:
        return build_payment_url(self.payment_page_url, record, embed_fields=self.embed_fields_in_url)

    def providers(self, url_or_query=None) -> List[DraftRecoveryProvider]:
        providers = [UrlDraftProvider(url_or_query)]
        if self.local_store is not None:
            providers.append(LocalStoreProvider(self.local_store))
        if self.session_store is not None:
            providers.append(SessionStoreProvider(self.session_store))
        return providers

    def recover(self, draft_id: Optional[str] = None, url_or_query=None) -> DraftRecovery:
        providers = self.providers(url_or_query)
        draft_id = draft_id or providers[0].draft_id
        if draft_id is None and self.session_store is not None:
            # The session remembers which draft the payment step belongs to.
            draft_id = self._bounded(self.session_store.current_id, label="session draft id lookup")
        return DraftResolver(providers, timeout=self.timeout).resolve(draft_id)

    def attach(self, recovery: DraftRecovery, attachment: DraftAttachment) -> DraftRecovery:
        if recovery.record is None:
            raise DraftLost("No saved registration found. Please register again.")
        recovery.record.attachment = attachment
        recovery.state = DraftState.RECOVERED_WITH_ATTACHMENT
        return recovery

    def discard(self, draft_id: str) -> None:
        if self.local_store is not None:
            self._bounded(self.local_store.delete, draft_id, label="local draft delete", default=False)
        if self.session_store is not None:
            self._bounded(self.session_store.delete, draft_id, label="session draft delete", default=False)

    def submit(self, recovery: DraftRecovery, client, utr: str, payment_screenshot: Optional[DraftAttachment] = None) -> dict:
        """Send the draft plus UTR to the server and forget it once accepted."""
        if recovery.record is None or recovery.state == DraftState.LOST:
            raise DraftLost("No saved registration found. Please register again.")
        record = recovery.record
        if record.attachment is None:
            raise ReuploadRequired("College ID file is required. Please upload your college ID proof.")

        fields = dict(record.data)
        fields["utrNumber"] = utr
        result = client.register(
            fields,
            record.attachment.as_upload(),
            payment_screenshot.as_upload() if payment_screenshot else None,
        )
        recovery.state = DraftState.SUBMITTED
        self.discard(record.id)
        recovery.state = DraftState.DELETED
        return result
