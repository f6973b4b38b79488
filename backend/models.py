from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, JSON, Index
from sqlalchemy.sql import func
from database import Base
import enum


class EventCategory(enum.Enum):
    TECHNICAL = "Technical"
    CULTURAL = "Cultural"
    SPORTS = "Sports"
    ESPORTS = "E-Sports"
    COMPETITIONS = "Competitions"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RegistrationStatus(enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(String(32), unique=True, nullable=False)  # ESP20260001, ESP20260002, etc.

    event_name = Column(String(255), nullable=False)
    event_category = Column(String(50), nullable=False, index=True)
    event_fee = Column(Numeric(10, 2), nullable=False)

    participant_name = Column(String(255), nullable=False)
    participant_email = Column(String(255), nullable=False, index=True)
    participant_phone = Column(String(20), nullable=False)
    participant_college = Column(String(255), nullable=False)
    participant_roll = Column(String(100), nullable=False)

    college_id_filename = Column(String(255), nullable=False)
    college_id_original_name = Column(String(255), nullable=False)
    college_id_path = Column(String(1000), nullable=False)
    college_id_size = Column(Integer, nullable=False)
    college_id_mimetype = Column(String(100), nullable=False)

    team_size = Column(Integer, default=1, nullable=False)
    team_name = Column(String(255), nullable=True)
    team_captain = Column(String(255), nullable=True)
    team_members = Column(JSON, nullable=False, default=list)  # [{"name": "...", "email": "..."}]

    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)
    utr_number = Column(String(50), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    payment_proof = Column(JSON, nullable=True)
    payment_verified_by = Column(String(255), nullable=True)
    payment_verified_at = Column(DateTime(timezone=True), nullable=True)

    registration_status = Column(String(20), default=RegistrationStatus.ACTIVE.value, nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    submitted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ux_email_event", "participant_email", "event_name", unique=True),
    )


# Case-insensitive UTR uniqueness; rows without a UTR are exempt.
Index(
    "ux_utr",
    func.upper(Registration.utr_number),
    unique=True,
    postgresql_where=Registration.utr_number.isnot(None),
    sqlite_where=Registration.utr_number.isnot(None),
)
