from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any
from enum import Enum
from datetime import datetime
from decimal import Decimal
import json
import re

from identifier_rules import normalize_utr, UTR_RE


class EventCategoryEnum(str, Enum):
    TECHNICAL = "Technical"
    CULTURAL = "Cultural"
    SPORTS = "Sports"
    ESPORTS = "E-Sports"
    COMPETITIONS = "Competitions"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RegistrationStatusEnum(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


PHONE_RE = re.compile(r"^[6-9]\d{9}$")
TEAM_MEMBER_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_team_members(value: Any) -> List[dict]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValueError("Invalid teamMembers format")
    if not isinstance(value, list):
        raise ValueError("Invalid teamMembers format")

    members = []
    for item in value:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        email = str(item.get("email") or "").strip()
        if name and TEAM_MEMBER_EMAIL_RE.match(email):
            members.append({"name": name, "email": email})
    return members


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TeamMember(BaseModel):
    name: str
    email: str


class RegistrationForm(CamelModel):
    event_name: str = Field(..., min_length=1, max_length=255)
    event_category: EventCategoryEnum
    event_fee: Decimal = Field(..., ge=0)
    participant_name: str = Field(..., min_length=1, max_length=255)
    participant_email: EmailStr
    participant_phone: str
    participant_college: str = Field(..., min_length=1, max_length=255)
    participant_roll: str = Field(..., min_length=1, max_length=100)
    team_size: int = Field(1, ge=1, le=20)
    team_name: Optional[str] = None
    team_captain: Optional[str] = None
    team_members: List[TeamMember] = Field(default_factory=list)
    utr_number: Optional[str] = None

    @field_validator("event_name", "participant_name", "participant_college", "participant_roll", "participant_phone", mode="before")
    @classmethod
    def strip_required(cls, value):
        return str(value).strip() if value is not None else value

    @field_validator("team_name", "team_captain", mode="before")
    @classmethod
    def strip_optional(cls, value):
        return _strip_optional(value)

    @field_validator("team_size", mode="before")
    @classmethod
    def default_team_size(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return 1
        return value

    @field_validator("participant_email", mode="after")
    @classmethod
    def lower_email(cls, value):
        return str(value).lower()

    @field_validator("participant_phone")
    @classmethod
    def check_phone(cls, value):
        if not PHONE_RE.match(value or ""):
            raise ValueError("Participant phone must be a valid 10-digit Indian number")
        return value

    @field_validator("team_members", mode="before")
    @classmethod
    def parse_team_members(cls, value):
        return _parse_team_members(value)

    @field_validator("utr_number", mode="before")
    @classmethod
    def check_utr(cls, value):
        normalized = normalize_utr(value)
        if not normalized:
            return None
        if not UTR_RE.match(normalized):
            raise ValueError("UTR must be 6-50 alphanumeric characters")
        return normalized

    def to_columns(self) -> dict:
        data = self.model_dump()
        data["event_category"] = self.event_category.value
        data["team_members"] = [m.model_dump() for m in self.team_members]
        return data


class RegistrationCreatedResponse(CamelModel):
    registration_id: str
    event_name: str
    participant_name: str
    participant_email: str
    payment_status: str
    submitted_at: Optional[datetime] = None


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    registration_id: str
    event_name: str
    event_category: str
    event_fee: float
    participant_name: str
    participant_email: str
    participant_phone: str
    participant_college: str
    participant_roll: str
    college_id_filename: str
    college_id_original_name: str
    college_id_path: str
    college_id_size: int
    college_id_mimetype: str
    team_size: int
    team_name: Optional[str] = None
    team_captain: Optional[str] = None
    team_members: List[TeamMember] = Field(default_factory=list)
    payment_status: str
    utr_number: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_proof: Optional[dict] = None
    payment_verified_by: Optional[str] = None
    payment_verified_at: Optional[datetime] = None
    registration_status: str
    admin_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentVerifyRequest(CamelModel):
    registration_id: str = Field(..., min_length=1)
    utr_number: str = Field(..., min_length=1)


class PaymentStatusUpdate(CamelModel):
    registration_id: str = Field(..., min_length=1)
    status: PaymentStatusEnum


class BulkPaymentStatusUpdate(BaseModel):
    category: EventCategoryEnum
    status: PaymentStatusEnum


class RegistrationUpdate(CamelModel):
    event_name: Optional[str] = Field(None, min_length=1, max_length=255)
    event_category: Optional[EventCategoryEnum] = None
    event_fee: Optional[Decimal] = Field(None, ge=0)
    participant_name: Optional[str] = Field(None, min_length=1, max_length=255)
    participant_email: Optional[EmailStr] = None
    participant_phone: Optional[str] = None
    participant_college: Optional[str] = Field(None, min_length=1, max_length=255)
    participant_roll: Optional[str] = Field(None, min_length=1, max_length=100)
    team_size: Optional[int] = Field(None, ge=1, le=20)
    team_name: Optional[str] = None
    team_captain: Optional[str] = None
    team_members: Optional[List[TeamMember]] = None
    utr_number: Optional[str] = None
    registration_status: Optional[RegistrationStatusEnum] = None
    admin_notes: Optional[str] = None

    @field_validator("participant_phone")
    @classmethod
    def check_phone(cls, value):
        if value is not None and not PHONE_RE.match(value):
            raise ValueError("Participant phone must be a valid 10-digit Indian number")
        return value

    @field_validator("utr_number", mode="before")
    @classmethod
    def check_utr(cls, value):
        normalized = normalize_utr(value)
        if not normalized:
            return None
        if not UTR_RE.match(normalized):
            raise ValueError("UTR must be 6-50 alphanumeric characters")
        return normalized

    @field_validator("team_members", mode="before")
    @classmethod
    def parse_team_members(cls, value):
        if value is None:
            return None
        return _parse_team_members(value)

    def to_columns(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if "participant_email" in data and data["participant_email"]:
            data["participant_email"] = str(data["participant_email"]).lower()
        for key in ("event_category", "registration_status"):
            if isinstance(data.get(key), Enum):
                data[key] = data[key].value
        return data


class CategoryStat(BaseModel):
    category: str
    count: int
    revenue: float


class StatusStat(BaseModel):
    status: str
    count: int


class DashboardStats(CamelModel):
    total_registrations: int
    pending_payments: int
    confirmed_payments: int
    failed_payments: int
    total_revenue: float
    category_wise: List[CategoryStat]
    status_wise: List[StatusStat]


def registration_payload(row) -> dict:
    return RegistrationResponse.model_validate(row).model_dump(mode="json")
