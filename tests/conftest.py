from pathlib import Path
import io
import os
import sys
import tempfile

import pytest

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
for path in (str(ROOT), str(BACKEND_DIR)):
    if path not in sys.path:
        sys.path.insert(0, path)

# Must be set before the backend modules build their engine and upload dir.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="esplendidez-uploads-")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["ADMIN_PASSWORD"] = "test-admin"
os.environ["REGISTRATION_ID_PREFIX"] = "ESP2026"

ADMIN_HEADERS = {"X-Admin-Token": "test-admin", "X-Admin-Name": "desk-1"}


def make_png(size=(64, 64), color=(30, 120, 200)) -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def registration_form(**overrides) -> dict:
    form = {
        "eventName": "Code Sprint",
        "eventCategory": "Technical",
        "eventFee": "200",
        "participantName": "Asha Rao",
        "participantEmail": "asha.rao@gmail.com",
        "participantPhone": "9876543210",
        "participantCollege": "Madras Institute of Technology",
        "participantRoll": "2021503042",
    }
    form.update(overrides)
    return {k: v for k, v in form.items() if v is not None}


def registration_columns(**overrides) -> dict:
    fields = {
        "event_name": "Code Sprint",
        "event_category": "Technical",
        "event_fee": 200,
        "participant_name": "Asha Rao",
        "participant_email": "asha.rao@gmail.com",
        "participant_phone": "9876543210",
        "participant_college": "Madras Institute of Technology",
        "participant_roll": "2021503042",
        "college_id_filename": "id.jpg",
        "college_id_original_name": "id.png",
        "college_id_path": "/uploads/id.jpg",
        "college_id_size": 1024,
        "college_id_mimetype": "image/jpeg",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def fresh_db():
    from database import Base, engine
    import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine


@pytest.fixture
def db(fresh_db):
    from database import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(fresh_db):
    from fastapi.testclient import TestClient
    from server import app

    return TestClient(app)


@pytest.fixture
def upload_dir():
    from uploads import UPLOAD_DIR

    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    return UPLOAD_DIR


@pytest.fixture
def register(client):
    def _register(files=None, **overrides):
        if files is None:
            files = {"collegeIdProof": ("id.png", make_png(), "image/png")}
        return client.post("/api/registration/register", data=registration_form(**overrides), files=files)

    return _register
