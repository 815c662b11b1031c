import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, field_validator
from pymongo.errors import PyMongoError

import attendance
import directory
import restock
from database import MongoPersistence, create_document, db, get_documents
from driver import (
    RESTOCK_TICK_SECONDS,
    SCHEDULE_TICK_SECONDS,
    AutoModeDriver,
    FacilityChanged,
    PeriodicTick,
)
from permissions import (
    CAP_CATALOG_EDIT,
    CAP_FACILITY_MANAGE,
    CAP_FACILITY_STATUS,
    CAP_REGISTER_MANAGE,
    CAP_STAFF_ON_DUTY,
    PermissionDenied,
    find_staff,
    require,
    require_admin,
)
from scheduling import is_within_hours
from schemas import (
    AttendanceRecord,
    BusinessHour,
    CatalogItem,
    Comment,
    Facility,
    GeoPoint,
    Shift,
    Staff,
    User,
)

logger = logging.getLogger(__name__)

ENABLE_TICKS = os.getenv("ENABLE_TICKS", "1") not in ("0", "false", "False")


@asynccontextmanager
async def lifespan(app: FastAPI):
    driver = AutoModeDriver(MongoPersistence(db)) if db is not None else None
    app.state.driver = driver
    ticks: List[PeriodicTick] = []
    if driver is not None:
        driver.refresh()
        if ENABLE_TICKS:
            ticks = [
                PeriodicTick("schedule", SCHEDULE_TICK_SECONDS, driver.schedule_tick),
                PeriodicTick("restock", RESTOCK_TICK_SECONDS, driver.restock_tick),
            ]
            for tick in ticks:
                tick.start()
    else:
        logger.warning("DATABASE_URL not set; automatic mode and restock timers are off")
    try:
        yield
    finally:
        for tick in ticks:
            await tick.stop()


app = FastAPI(title="Shop Finder - Facilities API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PermissionDenied)
def permission_denied(request: Request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(restock.InvalidRestockTarget)
def invalid_restock_target(request: Request, exc: restock.InvalidRestockTarget):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(attendance.AttendanceError)
def attendance_error(request: Request, exc: attendance.AttendanceError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# -------------------------------
# Utilities
# -------------------------------

def get_driver(request: Request) -> AutoModeDriver:
    driver = getattr(request.app.state, "driver", None)
    if driver is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return driver


def now_for(request: Request) -> datetime:
    return get_driver(request).clock()


def require_actor(actor_id: Optional[str]) -> str:
    if not actor_id:
        raise HTTPException(status_code=401, detail="X-Actor-Id header required")
    return actor_id


def load_facility(facility_id: str) -> Facility:
    doc = db["facility"].find_one({"_id": facility_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Facility not found")
    return Facility(**doc)


def load_user(user_id: str) -> Optional[User]:
    doc = db["user"].find_one({"_id": user_id})
    return User(**doc) if doc else None


def all_facilities() -> List[Facility]:
    return [Facility(**doc) for doc in get_documents("facility")]


def save_facility(request: Request, facility: Facility, *fields: str) -> Facility:
    update = facility.model_dump(mode="json", include=set(fields))
    db["facility"].update_one({"_id": facility.id}, {"$set": update})
    get_driver(request).store.apply(FacilityChanged(facility))
    return facility


def actor_name(actor_id: str, facility: Facility) -> str:
    staff = find_staff(facility, actor_id)
    if staff is not None:
        return staff.username
    user = load_user(actor_id)
    return user.username if user else actor_id


def find_item(facility: Facility, item_id: str) -> CatalogItem:
    for item in facility.items:
        if item.id == item_id:
            return item
    raise HTTPException(status_code=404, detail="Item not found")


def replace_item(facility: Facility, updated: CatalogItem) -> Facility:
    items = [updated if i.id == updated.id else i for i in facility.items]
    return facility.model_copy(update={"items": items})


def find_staff_or_404(facility: Facility, staff_id: str) -> Staff:
    staff = find_staff(facility, staff_id)
    if staff is None:
        raise HTTPException(status_code=404, detail="Staff not found")
    return staff


def facility_view(facility: Facility, now: datetime) -> Dict[str, Any]:
    out = facility.model_dump(mode="json", exclude={"staff", "shift_library"})
    out["within_hours"] = is_within_hours(facility.business_hours, now)
    return out


def item_view(item: CatalogItem, now: datetime) -> Dict[str, Any]:
    out = item.model_dump(mode="json")
    out["countdown"] = restock.format_countdown(item.restock_at, now) if item.restock_at else None
    return out


# -------------------------------
# Health
# -------------------------------

@app.get("/")
def root():
    return {"message": "Shop Finder Facilities API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
        else:
            response["database"] = "❌ Not Configured"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# -------------------------------
# Users, favorites & comments
# -------------------------------

class CreateUser(BaseModel):
    username: str
    phone: str = ""
    email: Optional[str] = None


@app.post("/api/users")
def create_user(payload: CreateUser):
    if db["user"].find_one({"username": payload.username}):
        raise HTTPException(status_code=409, detail="Username taken")
    user = User(**payload.model_dump())
    create_document("user", user)
    return user.model_dump(mode="json")


@app.post("/api/users/{user_id}/favorites/{facility_id}")
def toggle_favorite(user_id: str, facility_id: str, x_actor_id: Optional[str] = Header(None)):
    if require_actor(x_actor_id) != user_id:
        raise PermissionDenied("Cannot change another user's favorites")
    user = load_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    load_facility(facility_id)
    favorites, is_favorite = directory.toggle_favorite(user.favorites, facility_id)
    db["user"].update_one({"_id": user_id}, {"$set": {"favorites": favorites}})
    return {"favorites": favorites, "is_favorite": is_favorite}


@app.get("/api/users/{user_id}/favorites")
def list_favorites(request: Request, user_id: str, q: str = ""):
    user = load_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    term = q.strip().lower()
    now = now_for(request)
    return [
        facility_view(f, now) for f in all_facilities()
        if f.id in user.favorites and (term in f.name.lower() or term in f.type.lower())
    ]


class CreateComment(BaseModel):
    text: str


@app.post("/api/facilities/{facility_id}/comments")
def add_comment(request: Request, facility_id: str, payload: CreateComment,
                x_actor_id: Optional[str] = Header(None)):
    user = load_user(require_actor(x_actor_id))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Comment is empty")
    load_facility(facility_id)
    comment = Comment(user_id=user.id, facility_id=facility_id, username=user.username,
                      text=payload.text.strip(), timestamp=now_for(request))
    # one comment per user per facility; the newest replaces the old
    db["comment"].delete_many({"facility_id": facility_id, "user_id": user.id})
    create_document("comment", comment)
    return comment.model_dump(mode="json")


@app.get("/api/facilities/{facility_id}/comments")
def list_comments(facility_id: str):
    rows = [Comment(**c) for c in get_documents("comment", {"facility_id": facility_id})]
    rows.sort(key=lambda c: c.timestamp, reverse=True)
    return [c.model_dump(mode="json") for c in rows]


# -------------------------------
# Facilities, search & discovery
# -------------------------------

class CreateFacility(BaseModel):
    name: str
    type: str = ""
    state: str = ""
    lga: str = ""
    address: str = ""
    contact: str = ""
    email: Optional[str] = None
    location: Optional[GeoPoint] = None
    location_visible: bool = True


@app.post("/api/facilities")
def register_facility(request: Request, payload: CreateFacility, x_actor_id: Optional[str] = Header(None)):
    owner = load_user(require_actor(x_actor_id))
    if owner is None:
        raise HTTPException(status_code=404, detail="User not found")
    if owner.facility_id:
        raise HTTPException(status_code=409, detail="User already owns a facility")
    data = payload.model_dump()
    data["contact"] = data["contact"] or owner.phone
    facility = Facility(owner_id=owner.id, code=directory.generate_facility_code(payload.name), **data)
    create_document("facility", facility)
    db["user"].update_one({"_id": owner.id}, {"$set": {"facility_id": facility.id}})
    get_driver(request).store.apply(FacilityChanged(facility))
    return facility.model_dump(mode="json")


@app.get("/api/facilities")
def list_facilities(request: Request) -> List[Dict[str, Any]]:
    now = now_for(request)
    return [facility_view(f, now) for f in all_facilities()]


@app.get("/api/facilities/{facility_id}")
def get_facility(request: Request, facility_id: str):
    return facility_view(load_facility(facility_id), now_for(request))


@app.get("/api/search")
def search_facilities(request: Request, q: str = Query(...)):
    now = now_for(request)
    return [facility_view(f, now) for f in directory.search(all_facilities(), q)]


@app.get("/api/discover")
def discover(q: str = "", category: Optional[str] = None,
             lat: Optional[float] = None, lng: Optional[float] = None):
    origin = GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None
    entries = directory.discover(all_facilities(), q, category, origin)
    return [e.model_dump(mode="json") for e in entries]


class StatusUpdate(BaseModel):
    is_open: bool


@app.post("/api/facilities/{facility_id}/status")
def set_status(request: Request, facility_id: str, payload: StatusUpdate,
               x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_STATUS)
    updated = get_driver(request).set_status(facility, payload.is_open, actor_name(actor_id, facility))
    return {"is_open": updated.is_open}


class HoursUpdate(BaseModel):
    business_hours: List[BusinessHour]
    is_automatic: bool

    @field_validator("business_hours")
    @classmethod
    def times_are_hhmm(cls, hours: List[BusinessHour]) -> List[BusinessHour]:
        for h in hours:
            for value in (h.open, h.close):
                datetime.strptime(value, "%H:%M")
        return hours


@app.put("/api/facilities/{facility_id}/hours")
def update_hours(request: Request, facility_id: str, payload: HoursUpdate,
                 x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    try:
        updated = Facility(**{**facility.model_dump(), **payload.model_dump()})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])
    save_facility(request, updated, "business_hours", "is_automatic")
    return {"business_hours": payload.model_dump(mode="json")["business_hours"],
            "is_automatic": updated.is_automatic}


class StatusNote(BaseModel):
    note: Optional[str] = None


@app.put("/api/facilities/{facility_id}/status-note")
def update_status_note(request: Request, facility_id: str, payload: StatusNote,
                       x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_STATUS)
    note = (payload.note or "").strip() or None
    save_facility(request, facility.model_copy(update={"current_status": note}), "current_status")
    return {"current_status": note}


# -------------------------------
# Catalog & restock timers
# -------------------------------

class CreateItem(BaseModel):
    name: str
    time: Optional[str] = None


class MarkUnavailable(BaseModel):
    restock_at: Optional[Union[str, int]] = None


@app.get("/api/facilities/{facility_id}/items")
def list_items(request: Request, facility_id: str, q: str = "", available_only: bool = False):
    facility = load_facility(facility_id)
    now = now_for(request)
    term = q.strip().lower()
    items = [i for i in facility.items if term in i.name.lower()]
    if available_only:
        items = [i for i in items if i.available]
    items.sort(key=lambda i: i.name.lower())
    return [item_view(i, now) for i in items]


@app.post("/api/facilities/{facility_id}/items")
def add_item(request: Request, facility_id: str, payload: CreateItem,
             x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_CATALOG_EDIT)
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Item name is required")
    item = CatalogItem(name=payload.name.strip(), time=payload.time or None)
    save_facility(request, facility.model_copy(update={"items": facility.items + [item]}), "items")
    return item.model_dump(mode="json")


@app.post("/api/facilities/{facility_id}/items/{item_id}/unavailable")
def mark_item_unavailable(request: Request, facility_id: str, item_id: str, payload: MarkUnavailable,
                          x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_CATALOG_EDIT)
    item = find_item(facility, item_id)
    now = now_for(request)
    target = None
    if payload.restock_at is not None:
        target = restock.parse_restock_target(payload.restock_at, now)
    updated = restock.mark_unavailable(item, target)
    save_facility(request, replace_item(facility, updated), "items")
    return item_view(updated, now)


@app.post("/api/facilities/{facility_id}/items/{item_id}/restock")
def restock_item(request: Request, facility_id: str, item_id: str,
                 x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_CATALOG_EDIT)
    updated = restock.restock(find_item(facility, item_id))
    save_facility(request, replace_item(facility, updated), "items")
    return item_view(updated, now_for(request))


@app.delete("/api/facilities/{facility_id}/items/{item_id}")
def delete_item(request: Request, facility_id: str, item_id: str,
                x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_CATALOG_EDIT)
    find_item(facility, item_id)
    items = [i for i in facility.items if i.id != item_id]
    save_facility(request, facility.model_copy(update={"items": items}), "items")
    return {"message": "Deleted"}


# -------------------------------
# Status history
# -------------------------------

@app.get("/api/facilities/{facility_id}/history")
def list_history(request: Request, facility_id: str, x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_STATUS)
    log = get_driver(request).log
    log.purge_older_than(facility_id)
    return [
        {**e.model_dump(mode="json"), "action": e.action}
        for e in log.list(facility_id)
    ]


@app.delete("/api/facilities/{facility_id}/history")
def clear_history(request: Request, facility_id: str, confirm: bool = False,
                  x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear the history")
    try:
        get_driver(request).log.clear_all(facility_id)
    except PyMongoError:
        logger.exception("Failed to clear history for facility %s", facility_id)
        raise HTTPException(status_code=503, detail="History could not be cleared")
    return {"message": "History cleared"}


# -------------------------------
# Staff & shifts
# -------------------------------

class CreateStaff(BaseModel):
    username: str
    position: str = ""
    can_add_items: bool = True
    can_see_staff_on_duty: bool = False
    can_manage_register: bool = False
    eligible_shifts: List[str] = []


class UpdateStaff(BaseModel):
    position: Optional[str] = None
    can_add_items: Optional[bool] = None
    can_see_staff_on_duty: Optional[bool] = None
    can_manage_register: Optional[bool] = None
    eligible_shifts: Optional[List[str]] = None


class CreateShift(BaseModel):
    name: str
    start: str
    end: str


@app.post("/api/facilities/{facility_id}/staff")
def add_staff(request: Request, facility_id: str, payload: CreateStaff,
              x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    if any(s.username == payload.username for s in facility.staff):
        raise HTTPException(status_code=409, detail="Staff username taken")
    staff = Staff(unique_code=directory.generate_staff_code(), **payload.model_dump())
    save_facility(request, facility.model_copy(update={"staff": facility.staff + [staff]}), "staff")
    return staff.model_dump(mode="json")


@app.patch("/api/facilities/{facility_id}/staff/{staff_id}")
def update_staff(request: Request, facility_id: str, staff_id: str, payload: UpdateStaff,
                 x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    updated = find_staff_or_404(facility, staff_id).model_copy(update=payload.model_dump(exclude_none=True))
    staff = [updated if s.id == staff_id else s for s in facility.staff]
    save_facility(request, facility.model_copy(update={"staff": staff}), "staff")
    return updated.model_dump(mode="json")


@app.post("/api/facilities/{facility_id}/shifts")
def add_shift(request: Request, facility_id: str, payload: CreateShift,
              x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    try:
        minutes = attendance.shift_duration_minutes(payload.start, payload.end)
    except ValueError:
        raise HTTPException(status_code=400, detail="Shift times must be HH:MM")
    shift = Shift(duration_hours=round(minutes / 60, 2), **payload.model_dump())
    save_facility(request, facility.model_copy(update={"shift_library": facility.shift_library + [shift]}),
                  "shift_library")
    return shift.model_dump(mode="json")


# -------------------------------
# Attendance register
# -------------------------------

class AttendanceAction(BaseModel):
    approved: bool = False
    shift_id: Optional[str] = None


class Overtime(BaseModel):
    minutes: int


def load_record(facility_id: str, record_id: str) -> Optional[AttendanceRecord]:
    doc = db["attendance"].find_one({"_id": record_id, "facility_id": facility_id})
    return AttendanceRecord(**doc) if doc else None


def save_record(record: AttendanceRecord) -> None:
    doc = record.model_dump(mode="json")
    db["attendance"].replace_one({"_id": record.id}, {"_id": record.id, **doc}, upsert=True)


@app.post("/api/facilities/{facility_id}/attendance/{staff_id}/{action}")
def attendance_action(request: Request, facility_id: str, staff_id: str, action: str,
                      payload: Optional[AttendanceAction] = None,
                      x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_REGISTER_MANAGE)
    staff = find_staff_or_404(facility, staff_id)
    payload = payload or AttendanceAction()
    now = now_for(request)
    existing = load_record(facility_id, attendance.record_id(staff_id, attendance.local_date(now)))

    if action == "in":
        record = attendance.sign_in(facility_id, staff, now, existing, payload.shift_id)
    elif action == "absent":
        record = attendance.mark_absent(facility_id, staff, now)
    elif action in ("out", "break_start", "break_end"):
        if existing is None:
            raise HTTPException(status_code=409, detail="Not signed in")
        if action == "out":
            record = attendance.sign_out(existing, now)
        elif action == "break_start":
            record = attendance.start_break(existing, now)
        else:
            record = attendance.end_break(existing, now, payload.approved)
    else:
        raise HTTPException(status_code=400, detail="Unknown attendance action")

    save_record(record)
    return record.model_dump(mode="json")


@app.put("/api/facilities/{facility_id}/attendance/{staff_id}/overtime")
def record_overtime(request: Request, facility_id: str, staff_id: str, payload: Overtime,
                    x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_REGISTER_MANAGE)
    find_staff_or_404(facility, staff_id)
    existing = load_record(facility_id, attendance.record_id(staff_id, attendance.local_date(now_for(request))))
    if existing is None:
        raise HTTPException(status_code=404, detail="No register entry today")
    record = attendance.set_overtime(existing, payload.minutes)
    save_record(record)
    return record.model_dump(mode="json")


@app.get("/api/facilities/{facility_id}/on-duty")
def staff_on_duty(request: Request, facility_id: str, q: str = "",
                  x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_STAFF_ON_DUTY)
    today = attendance.local_date(now_for(request))
    records = [AttendanceRecord(**r) for r in get_documents("attendance", {"facility_id": facility_id, "date": today})]
    return [
        {"staff_id": s.id, "username": s.username, "position": s.position,
         "since": rec.model_dump(mode="json")["sign_in"], "status": rec.status}
        for rec, s in attendance.on_duty(records, facility.staff, q)
    ]


def month_records(facility_id: str, month: str) -> List[AttendanceRecord]:
    try:
        start, end = attendance.month_bounds(month)
    except ValueError:
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")
    rows = get_documents("attendance", {"facility_id": facility_id, "date": {"$gte": start, "$lte": end}})
    return [AttendanceRecord(**r) for r in rows]


@app.get("/api/facilities/{facility_id}/attendance/stats")
def attendance_stats(facility_id: str, month: str = Query(...), x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_REGISTER_MANAGE)
    stats = attendance.monthly_stats(facility.staff, facility.shift_library, month_records(facility_id, month))
    return [s.model_dump() for s in stats]


@app.delete("/api/facilities/{facility_id}/attendance")
def clear_attendance_month(facility_id: str, month: str = Query(...), confirm: bool = False,
                           x_actor_id: Optional[str] = Header(None)):
    actor_id = require_actor(x_actor_id)
    facility = load_facility(facility_id)
    require(actor_id, facility, CAP_FACILITY_MANAGE)
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear the month")
    try:
        start, end = attendance.month_bounds(month)
    except ValueError:
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")
    result = db["attendance"].delete_many({"facility_id": facility_id, "date": {"$gte": start, "$lte": end}})
    logger.info("Cleared %d attendance records for facility %s (%s)", result.deleted_count, facility_id, month)
    return {"deleted": result.deleted_count}


# -------------------------------
# Admin
# -------------------------------

@app.get("/api/admin/stats")
def admin_stats(request: Request, x_actor_id: Optional[str] = Header(None)):
    require_admin(load_user(require_actor(x_actor_id)))
    facilities = all_facilities()
    categories: Dict[str, int] = {}
    states: Dict[str, int] = {}
    for f in facilities:
        categories[f.type] = categories.get(f.type, 0) + 1
        states[f.state] = states.get(f.state, 0) + 1
    return {
        "total_users": db["user"].count_documents({}),
        "total_facilities": len(facilities),
        "open_facilities": sum(1 for f in facilities if f.is_open),
        "total_events": len(get_driver(request).persistence.read_all_transitions()),
        "categories": sorted(categories.items(), key=lambda kv: kv[1], reverse=True),
        "states": sorted(states.items(), key=lambda kv: kv[1], reverse=True),
    }


# -------------------------------
# Scheduler
# -------------------------------

@app.post("/api/scheduler/tick")
def run_ticks(request: Request):
    driver = get_driver(request)
    changed = driver.schedule_tick()
    restocked = driver.restock_tick()
    return {"status_changed": changed, "restocked": restocked}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
