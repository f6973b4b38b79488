import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import registration_store
from database import get_db
from schemas import PaymentVerifyRequest
from time_utils import isoformat_or_none

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payment/verify")
def verify_payment(payload: PaymentVerifyRequest, db: Session = Depends(get_db)):
    row = registration_store.verify_payment(db, payload.registration_id, payload.utr_number)
    logger.info("Payment verified for %s with UTR %s", row.registration_id, row.utr_number)
    return {
        "success": True,
        "message": "Payment verified",
        "data": {
            "registrationId": row.registration_id,
            "paymentStatus": row.payment_status,
            "utr": row.utr_number,
            "paymentDate": isoformat_or_none(row.payment_date),
        },
    }
