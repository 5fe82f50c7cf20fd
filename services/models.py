"""Domain records (cases, leads, payments) and the calendar view objects."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class CaseType(str, Enum):
    PERSONAL_INJURY = "personal_injury"
    CRIMINAL_DEFENSE = "criminal_defense"
    FAMILY_LAW = "family_law"
    BUSINESS_LAW = "business_law"
    ESTATE_PLANNING = "estate_planning"
    IMMIGRATION = "immigration"
    OTHER = "other"


class CaseStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    ON_HOLD = "on_hold"
    PENDING = "pending"


class DateType(str, Enum):
    COURT_DATE = "court_date"
    DEADLINE = "deadline"
    MEETING = "meeting"
    OTHER = "other"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    CLOSED = "closed"


class LeadSource(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    ADVERTISING = "advertising"
    SOCIAL_MEDIA = "social_media"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ValidationError(ValueError):
    """Submitted record data failed field validation; ``errors`` lists each field."""

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        super().__init__("; ".join(f"{e['field']}: {e['msg']}" for e in errors))


def clean_text(value: Any) -> str:
    return str(value or "").strip()


def check_enum(enum_cls, value: Any, field: str, errors: List[Dict[str, str]]) -> Optional[str]:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors.append({"field": field, "msg": f"Must be one of: {allowed}"})
        return None


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp into naive server-local time.

    Offset-aware values (including a trailing ``Z``) are converted to the
    local zone first; naive values are taken as already local.
    """
    text = (raw or "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


@dataclass(frozen=True)
class ImportantDate:
    id: int
    title: str
    date: datetime
    description: Optional[str] = None
    type: DateType = DateType.OTHER

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportantDate":
        return cls(
            id=row["id"],
            title=row["title"] or "",
            date=parse_timestamp(row["date"]),
            description=row["description"],
            type=DateType(row["type"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": format_timestamp(self.date),
            "description": self.description,
            "type": self.type.value,
        }


@dataclass(frozen=True)
class Note:
    id: int
    content: str
    created_by: Optional[int]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Note":
        return cls(
            id=row["id"],
            content=row["content"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )


@dataclass
class Case:
    """A client matter together with its dated entries and notes."""

    id: int
    case_number: str
    client_name: str
    case_type: CaseType
    client_email: str = ""
    client_phone: str = ""
    client_address: Dict[str, Optional[str]] = field(default_factory=dict)
    description: str = ""
    status: CaseStatus = CaseStatus.ACTIVE
    attorney_id: Optional[int] = None
    case_manager_id: Optional[int] = None
    billing_rate: float = 0.0
    total_paid: float = 0.0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    important_dates: List[ImportantDate] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)

    @classmethod
    def from_row(
        cls,
        row: sqlite3.Row,
        important_dates: Optional[List[ImportantDate]] = None,
        notes: Optional[List[Note]] = None,
    ) -> "Case":
        return cls(
            id=row["id"],
            case_number=row["case_number"],
            client_name=row["client_name"],
            case_type=CaseType(row["case_type"]),
            client_email=row["client_email"],
            client_phone=row["client_phone"],
            client_address={
                "street": row["client_street"],
                "city": row["client_city"],
                "state": row["client_state"],
                "zipCode": row["client_zip_code"],
            },
            description=row["description"],
            status=CaseStatus(row["status"]),
            attorney_id=row["attorney_id"],
            case_manager_id=row["case_manager_id"],
            billing_rate=float(row["billing_rate"] or 0),
            total_paid=float(row["total_paid"] or 0),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            important_dates=list(important_dates or []),
            notes=list(notes or []),
        )


@dataclass
class Lead:
    """A prospective client who has not yet become a case."""

    id: int
    name: str
    email: str
    phone: str
    case_type: CaseType
    description: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    source: LeadSource = LeadSource.OTHER
    assigned_to: Optional[int] = None
    follow_up_date: Optional[datetime] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    notes: List[Note] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row, notes: Optional[List[Note]] = None) -> "Lead":
        follow_up = row["follow_up_date"]
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            case_type=CaseType(row["case_type"]),
            description=row["description"],
            status=LeadStatus(row["status"]),
            source=LeadSource(row["source"]),
            assigned_to=row["assigned_to"],
            follow_up_date=parse_timestamp(follow_up) if follow_up else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            notes=list(notes or []),
        )


@dataclass(frozen=True)
class Payment:
    id: int
    case_id: int
    amount: float
    payment_method: PaymentMethod
    description: str
    paid_by: str
    receipt_number: str
    processed_by: Optional[int]
    status: PaymentStatus = PaymentStatus.COMPLETED
    notes: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Payment":
        return cls(
            id=row["id"],
            case_id=row["case_id"],
            amount=float(row["amount"]),
            payment_method=PaymentMethod(row["payment_method"]),
            description=row["description"],
            paid_by=row["paid_by"],
            receipt_number=row["receipt_number"],
            processed_by=row["processed_by"],
            status=PaymentStatus(row["status"]),
            notes=row["notes"],
            created_at=row["created_at"],
        )

@dataclass(frozen=True)
class ActionItem:
    """One dated entry of a case, as shown on the calendar."""

    case_id: int
    date_id: int
    case_number: str
    client_name: str
    case_type: CaseType
    title: str
    description: Optional[str]
    type: DateType
    timestamp: datetime

    @property
    def id(self) -> str:
        return f"{self.case_id}-{self.date_id}"

    @property
    def time(self) -> str:
        # 12-hour clock with a two-digit hour, e.g. "09:00 AM"
        return self.timestamp.strftime("%I:%M %p")

    @classmethod
    def from_entry(cls, case: Case, entry: ImportantDate) -> "ActionItem":
        return cls(
            case_id=case.id,
            date_id=entry.id,
            case_number=case.case_number,
            client_name=case.client_name,
            case_type=case.case_type,
            title=entry.title,
            description=entry.description,
            type=entry.type,
            timestamp=entry.date,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "caseId": self.case_id,
            "caseNumber": self.case_number,
            "clientName": self.client_name,
            "caseType": self.case_type.value,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "date": format_timestamp(self.timestamp),
            "time": self.time,
        }
