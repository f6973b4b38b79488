import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

import registration_store
from database import get_db
from errors import NotFoundError, ValidationError, from_pydantic
from models import PaymentStatus
from schemas import EventCategoryEnum, RegistrationCreatedResponse, RegistrationForm, registration_payload
from uploads import discard_attachment, read_upload, store_attachment

logger = logging.getLogger(__name__)

router = APIRouter()


def _has_file(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


@router.post("/registration/register", status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    event_name: Optional[str] = Form(None, alias="eventName"),
    event_category: Optional[str] = Form(None, alias="eventCategory"),
    event_fee: Optional[str] = Form(None, alias="eventFee"),
    participant_name: Optional[str] = Form(None, alias="participantName"),
    participant_email: Optional[str] = Form(None, alias="participantEmail"),
    participant_phone: Optional[str] = Form(None, alias="participantPhone"),
    participant_college: Optional[str] = Form(None, alias="participantCollege"),
    participant_roll: Optional[str] = Form(None, alias="participantRoll"),
    team_size: Optional[str] = Form(None, alias="teamSize"),
    team_name: Optional[str] = Form(None, alias="teamName"),
    team_captain: Optional[str] = Form(None, alias="teamCaptain"),
    team_members: Optional[str] = Form(None, alias="teamMembers"),
    utr_number: Optional[str] = Form(None, alias="utrNumber"),
    college_id_proof: Optional[UploadFile] = File(None, alias="collegeIdProof"),
    payment_screenshot: Optional[UploadFile] = File(None, alias="paymentScreenshot"),
    db: Session = Depends(get_db),
):
    raw = {
        "eventName": event_name,
        "eventCategory": event_category,
        "eventFee": event_fee,
        "participantName": participant_name,
        "participantEmail": participant_email,
        "participantPhone": participant_phone,
        "participantCollege": participant_college,
        "participantRoll": participant_roll,
        "teamSize": team_size,
        "teamName": team_name,
        "teamCaptain": team_captain,
        "teamMembers": team_members,
        "utrNumber": utr_number,
    }
    try:
        form = RegistrationForm.model_validate({k: v for k, v in raw.items() if v is not None})
    except PydanticValidationError as exc:
        raise from_pydantic(exc)

    if not _has_file(college_id_proof):
        raise ValidationError("College ID proof file is required")

    # Validate every upload before writing any of them.
    id_proof_data = read_upload(college_id_proof, "College ID proof")
    screenshot_data = None
    if _has_file(payment_screenshot):
        screenshot_data = read_upload(payment_screenshot, "Payment screenshot")

    id_proof = store_attachment(college_id_proof, "id-proof", data=id_proof_data)
    payment_proof = None
    try:
        if screenshot_data is not None:
            payment_proof = store_attachment(payment_screenshot, "payment-proof", data=screenshot_data)

        fields = form.to_columns()
        fields.update(
            college_id_filename=id_proof["filename"],
            college_id_original_name=id_proof["originalName"],
            college_id_path=id_proof["path"],
            college_id_size=id_proof["size"],
            college_id_mimetype=id_proof["mimetype"],
            payment_proof=payment_proof,
            payment_status=PaymentStatus.PENDING.value,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        row = registration_store.create(db, fields)
    except Exception:
        discard_attachment(id_proof)
        discard_attachment(payment_proof)
        raise

    created = RegistrationCreatedResponse.model_validate(row, from_attributes=True)
    return {
        "success": True,
        "message": "Registration submitted successfully",
        "data": created.model_dump(by_alias=True, mode="json"),
    }


@router.get("/registration/all")
def get_all_registrations(
    category: Optional[EventCategoryEnum] = None,
    event: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rows = registration_store.find_all(db, category=category.value if category else None, event_name=event)
    return {"success": True, "data": [registration_payload(r) for r in rows]}


@router.get("/registration/category/{category}")
def get_registrations_by_category(category: str, db: Session = Depends(get_db)):
    rows = registration_store.find_all(db, category=category)
    return {"success": True, "data": [registration_payload(r) for r in rows]}


@router.get("/registration/event/{event}")
def get_registrations_by_event(event: str, db: Session = Depends(get_db)):
    rows = registration_store.find_all(db, event_name=event)
    return {"success": True, "data": [registration_payload(r) for r in rows]}


@router.get("/registration/utr/{utr}")
def check_utr(utr: str, db: Session = Depends(get_db)):
    normalized, available = registration_store.is_utr_available(db, utr)
    return {"success": True, "utr": normalized, "available": available}


@router.get("/registration/{registration_id}")
def get_registration(registration_id: str, db: Session = Depends(get_db)):
    row = registration_store.find_by_id(db, registration_id)
    if not row:
        raise NotFoundError()
    return {"success": True, "data": registration_payload(row)}
