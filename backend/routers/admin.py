from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Optional
import io
import csv
import logging

from openpyxl import Workbook

import registration_store
from database import get_db
from errors import NotFoundError, ValidationError
from schemas import (
    BulkPaymentStatusUpdate, DashboardStats, EventCategoryEnum, PaymentStatusEnum,
    PaymentStatusUpdate, RegistrationUpdate, registration_payload,
)
from security import require_admin
from time_utils import format_for_export, isoformat_or_none

logger = logging.getLogger(__name__)

router = APIRouter()

EXPORT_HEADERS = [
    "Registration ID", "Event", "Category", "Fee", "Name", "Email", "Phone", "College", "Roll",
    "Team Size", "Team Name", "Team Captain", "Team Members", "Payment Status", "UTR",
    "Payment Date", "Submitted At",
]


def _export_row(row) -> list:
    members = "; ".join(f"{m.get('name')} <{m.get('email')}>" for m in (row.team_members or []))
    return [
        row.registration_id, row.event_name, row.event_category, float(row.event_fee),
        row.participant_name, row.participant_email, row.participant_phone,
        row.participant_college, row.participant_roll,
        row.team_size, row.team_name or "", row.team_captain or "", members,
        row.payment_status, row.utr_number or "",
        format_for_export(row.payment_date), format_for_export(row.submitted_at),
    ]


@router.get("/admin/stats")
def get_dashboard_stats(admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    stats = DashboardStats.model_validate(registration_store.get_statistics(db))
    return {"success": True, "data": stats.model_dump(by_alias=True)}


@router.patch("/admin/payment-status")
def update_payment_status(payload: PaymentStatusUpdate, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    row = registration_store.update_payment_status(db, payload.registration_id, payload.status.value, verified_by=admin)
    logger.info("%s set payment status of %s to %s", admin, row.registration_id, row.payment_status)
    return {
        "success": True,
        "message": "Payment status updated",
        "data": {
            "registrationId": row.registration_id,
            "paymentStatus": row.payment_status,
            "paymentDate": isoformat_or_none(row.payment_date),
        },
    }


@router.patch("/admin/bulk-payment-status")
def bulk_update_payment_status(payload: BulkPaymentStatusUpdate, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    modified = registration_store.bulk_update_payment_status(db, payload.category.value, payload.status.value, verified_by=admin)
    return {"success": True, "message": "Bulk update complete", "data": {"modified": modified}}


@router.get("/admin/registrations")
def list_registrations(
    category: Optional[EventCategoryEnum] = None,
    status: Optional[PaymentStatusEnum] = None,
    event: Optional[str] = None,
    search: Optional[str] = None,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = registration_store.find_all(
        db,
        category=category.value if category else None,
        payment_status=status.value if status else None,
        event_name=event,
        search=search,
    )
    return {"success": True, "count": len(rows), "data": [registration_payload(r) for r in rows]}


@router.put("/admin/registrations/{registration_id}")
def update_registration(
    registration_id: str,
    payload: RegistrationUpdate,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    row = registration_store.update(db, registration_id, payload.to_columns())
    logger.info("%s edited registration %s", admin, registration_id)
    return {"success": True, "message": "Registration updated", "data": registration_payload(row)}


@router.delete("/admin/registrations/{registration_id}")
def delete_registration(registration_id: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    deleted = registration_store.delete(db, registration_id)
    if deleted is None:
        raise NotFoundError()
    logger.info("%s deleted registration %s", admin, registration_id)
    return {"success": True, "message": "Registration deleted", "data": deleted.model_dump(mode="json")}


@router.get("/admin/image/{registration_id}/{kind}")
def get_attachment_info(registration_id: str, kind: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    if kind not in ("id-proof", "payment-proof"):
        raise ValidationError("Invalid image type. Must be id-proof or payment-proof")
    row = registration_store.find_by_id(db, registration_id)
    if not row:
        raise NotFoundError()

    participant = {"name": row.participant_name, "email": row.participant_email}
    if kind == "id-proof":
        return {
            "success": True,
            "data": {
                "type": kind,
                "filename": row.college_id_filename,
                "originalName": row.college_id_original_name,
                "url": row.college_id_path,
                "size": row.college_id_size,
                "mimetype": row.college_id_mimetype,
                "participant": participant,
            },
        }

    proof = row.payment_proof
    if not proof:
        raise NotFoundError("Payment proof not found for this registration")
    return {
        "success": True,
        "data": {
            "type": kind,
            "filename": proof.get("filename"),
            "originalName": proof.get("originalName"),
            "url": proof.get("path"),
            "size": proof.get("size"),
            "mimetype": proof.get("mimetype"),
            "utr": row.utr_number,
            "participant": participant,
        },
    }


@router.get("/admin/export")
def export_registrations(
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    category: Optional[EventCategoryEnum] = None,
    status: Optional[PaymentStatusEnum] = None,
    event: Optional[str] = None,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = registration_store.find_all(
        db,
        category=category.value if category else None,
        payment_status=status.value if status else None,
        event_name=event,
    )
    basename = f"registrations-{category.value.lower()}" if category else "registrations"

    if format == "xlsx":
        wb = Workbook()
        ws = wb.active
        ws.title = "Registrations"
        ws.append(EXPORT_HEADERS)
        for row in rows:
            ws.append(_export_row(row))
        stream = io.BytesIO()
        wb.save(stream)
        stream.seek(0)
        headers = {"Content-Disposition": f"attachment; filename={basename}.xlsx"}
        return StreamingResponse(stream, media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", headers=headers)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADERS)
    for row in rows:
        writer.writerow(_export_row(row))
    headers = {"Content-Disposition": f"attachment; filename={basename}.csv"}
    return StreamingResponse(iter([output.getvalue()]), media_type="text/csv", headers=headers)
