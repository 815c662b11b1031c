"""
Database Schemas for Shop Finder - facilities, catalog and staff register

Each Pydantic model represents a collection in MongoDB (or an embedded
document of one). The collection name is the lowercase of the class name;
status history lives in "transition_log", one document per facility.

Timestamps are timezone-aware UTC datetimes in Python and epoch
milliseconds when serialized.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, PlainSerializer, field_validator

from database import new_id, to_millis


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


Timestamp = Annotated[
    datetime,
    AfterValidator(_as_utc),
    PlainSerializer(to_millis, return_type=int),
]

Weekday = Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

WEEKDAYS: List[str] = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class FacilityStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"

    @classmethod
    def from_bool(cls, is_open: bool) -> "FacilityStatus":
        return cls.OPEN if is_open else cls.CLOSED


class BusinessHour(BaseModel):
    id: str = Field(default_factory=new_id)
    day: Weekday
    open: str = Field("09:00", description="HH:MM 24h")
    close: str = Field("17:00", description="HH:MM 24h")
    enabled: bool = True


class CatalogItem(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    time: Optional[str] = Field(None, description="Free-text time/details")
    available: bool = True
    restock_at: Optional[Timestamp] = None


class Shift(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    start: str = Field(..., description="HH:MM 24h")
    end: str = Field(..., description="HH:MM 24h")
    duration_hours: float = 0


class Staff(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    position: str = ""
    unique_code: str = Field("", description="4 digits + 2 letters, e.g. 1234AB")
    can_add_items: bool = True
    can_see_staff_on_duty: bool = False
    can_manage_register: bool = False
    eligible_shifts: List[str] = Field(default_factory=list)


class GeoPoint(BaseModel):
    lat: float
    lng: float


class Facility(BaseModel):
    """
    Facilities collection schema
    Collection name: "facility"
    """
    id: str = Field(default_factory=new_id)
    owner_id: str
    code: str = Field(..., description="Short shareable code, e.g. MAMA-123AB")
    name: str
    type: str = Field("", description="Business category")
    state: str = ""
    lga: str = ""
    address: str = ""
    contact: str = ""
    email: Optional[str] = None
    is_open: bool = False
    is_automatic: bool = False
    location_visible: bool = True
    current_status: Optional[str] = Field(None, description="Free-text status note")
    business_hours: List[BusinessHour] = Field(default_factory=list)
    items: List[CatalogItem] = Field(default_factory=list)
    staff: List[Staff] = Field(default_factory=list)
    shift_library: List[Shift] = Field(default_factory=list)
    location: Optional[GeoPoint] = None

    @field_validator("business_hours")
    @classmethod
    def one_entry_per_day(cls, hours: List[BusinessHour]) -> List[BusinessHour]:
        seen = set()
        for h in hours:
            if h.day in seen:
                raise ValueError(f"Duplicate business hours for {h.day}")
            seen.add(h.day)
        return hours


class TransitionEvent(BaseModel):
    """
    One status change, embedded in a "transition_log" document
    """
    id: str = Field(default_factory=new_id)
    facility_id: str
    occurred_at: Timestamp
    new_state: FacilityStatus
    actor: str = Field(..., description='"manual:<username>" or "system:auto-mode"')

    model_config = {"frozen": True}

    @property
    def action(self) -> str:
        return "Opened Facility" if self.new_state == FacilityStatus.OPEN else "Closed Facility"


class BreakPeriod(BaseModel):
    out_at: Timestamp
    back_at: Optional[Timestamp] = None
    approved: bool = False


class AttendanceRecord(BaseModel):
    """
    Attendance collection schema
    Collection name: "attendance"; id is "<staff_id>_<YYYY-MM-DD>"
    """
    id: str
    facility_id: str
    staff_id: str
    staff_name: str = ""
    shift_id: Optional[str] = None
    date: str = Field(..., description="ISO date YYYY-MM-DD")
    sign_in: Optional[Timestamp] = None
    sign_out: Optional[Timestamp] = None
    status: Literal["Present", "Absent", "On Break", "Sign Out"] = "Present"
    overtime_minutes: int = 0
    breaks: List[BreakPeriod] = Field(default_factory=list)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    id: str = Field(default_factory=new_id)
    username: str
    phone: str = ""
    email: Optional[str] = None
    facility_id: Optional[str] = None
    is_admin: bool = False
    favorites: List[str] = Field(default_factory=list)


class Comment(BaseModel):
    """
    Comments collection schema
    Collection name: "comment"
    """
    id: str = Field(default_factory=new_id)
    user_id: str
    facility_id: str
    username: str
    text: str
    timestamp: Timestamp
