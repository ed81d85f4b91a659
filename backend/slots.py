"""
Shape translation between stored timetable documents and the flat slot
records served to the frontend.

A timetable document groups every slot of one class on one day:

    {"_id": ObjectId, "classId": ObjectId, "day": "Monday",
     "timeSlots": [{"_id": ObjectId, "startTime": "09:00", "endTime": "10:00",
                    "subjectId": ObjectId, "facultyId": ObjectId,
                    "classroom": "A101"}]}

Clients see one record per slot, addressed by "<timetableId>_<slotId>".
"""
import re
from collections import namedtuple
from datetime import datetime

from bson import ObjectId
from bson.errors import InvalidId

from backend.errors import NotFound, ValidationError

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAY_INDEX = {day: i for i, day in enumerate(DAYS)}

SEPARATOR = "_"
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

FLAT_SLOT_FIELDS = ("subjectId", "facultyId", "startTime", "endTime", "room")
SLOT_FIELDS = ("startTime", "endTime", "subjectId", "facultyId", "classroom")


def parse_object_id(value):
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, dict):
        value = value.get("_id")
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


# ----------------- Composite identifiers -----------------

class TimetableRef(namedtuple("TimetableRef", ["timetable_id", "slot_id"])):
    """A parsed path identifier. ``slot_id`` is None for a whole timetable."""
    __slots__ = ()

    @property
    def is_slot(self):
        return self.slot_id is not None


def encode(timetable_id, slot_id):
    return f"{timetable_id}{SEPARATOR}{slot_id}"


def decode(value):
    raw = (value or "").strip()
    if SEPARATOR in raw:
        timetable_part, slot_part = raw.split(SEPARATOR, 1)
    else:
        timetable_part, slot_part = raw, None

    timetable_id = parse_object_id(timetable_part)
    if timetable_id is None:
        raise NotFound("Timetable not found")
    if slot_part is None:
        return TimetableRef(timetable_id, None)

    slot_id = parse_object_id(slot_part)
    if slot_id is None:
        raise NotFound("Time slot not found")
    return TimetableRef(timetable_id, slot_id)


# ----------------- Write path -----------------

def body_shape(body):
    """Pick "flat" or "nested" for a POST body."""
    shape = body.get("shape")
    if shape is not None:
        if shape not in ("flat", "nested"):
            raise ValidationError("shape must be 'flat' or 'nested'")
        return shape
    if "timeSlots" in body:
        return "nested"
    # Any slot field means a flat record, so missing ones are reported.
    if any(field in body for field in FLAT_SLOT_FIELDS):
        return "flat"
    return "nested"


def _reference(data, field, errors, required=True):
    value = data.get(field)
    if value in (None, ""):
        if required:
            errors.append(f"{field} is required")
        return None
    oid = parse_object_id(value)
    if oid is None:
        errors.append(f"{field} is not a valid id")
    return oid


def _time(data, field, errors):
    value = data.get(field)
    if not value:
        errors.append(f"{field} is required")
        return None
    if not isinstance(value, str) or not TIME_RE.match(value):
        errors.append(f"{field} must be in HH:MM format")
        return None
    return value


def validate_day(value, errors):
    if not value:
        errors.append("day is required")
        return None
    if value not in DAY_INDEX:
        errors.append(f"day must be one of {', '.join(DAYS)}")
        return None
    return value


def build_slot(data, room_field="classroom", errors=None):
    """Validate one slot payload and return it in stored form."""
    own_errors = errors is None
    errors = [] if own_errors else errors

    slot = {
        "startTime": _time(data, "startTime", errors),
        "endTime": _time(data, "endTime", errors),
        "subjectId": _reference(data, "subjectId", errors),
        "facultyId": _reference(data, "facultyId", errors),
        "classroom": str(data.get(room_field) or "").strip(),
    }
    if not slot["classroom"]:
        errors.append(f"{room_field} is required")
    slot_id = parse_object_id(data.get("_id")) if data.get("_id") else None
    slot["_id"] = slot_id or ObjectId()

    if own_errors and errors:
        raise ValidationError(errors)
    return slot


def build_timetable(body):
    """Validate a nested timetable body."""
    errors = []
    class_id = _reference(body, "classId", errors)
    day = validate_day(body.get("day"), errors)
    raw_slots = body.get("timeSlots") or []
    if not isinstance(raw_slots, list):
        errors.append("timeSlots must be a list")
        raw_slots = []
    slots = [build_slot(raw if isinstance(raw, dict) else {}, errors=errors) for raw in raw_slots]
    if errors:
        raise ValidationError(errors)
    return {"classId": class_id, "day": day, "timeSlots": slots}


def build_flat_parts(body):
    """Split a flat record into (classId, day, stored slot)."""
    errors = []
    class_id = _reference(body, "classId", errors)
    day = validate_day(body.get("day"), errors)
    slot = build_slot(body, room_field="room", errors=errors)
    if errors:
        raise ValidationError(errors)
    return class_id, day, slot


def build_document_patch(body):
    """Whole-document update: only known top-level fields are accepted."""
    errors = []
    patch = {}
    if "classId" in body:
        patch["classId"] = _reference(body, "classId", errors)
    if "day" in body:
        patch["day"] = validate_day(body.get("day"), errors)
    if "timeSlots" in body:
        raw_slots = body.get("timeSlots")
        if not isinstance(raw_slots, list):
            errors.append("timeSlots must be a list")
        else:
            patch["timeSlots"] = [build_slot(raw if isinstance(raw, dict) else {}, errors=errors) for raw in raw_slots]
    if errors:
        raise ValidationError(errors)
    return patch


def build_slot_patch(body):
    """Composite update: slot fields plus the parent's day and classId."""
    errors = []
    slot_fields = build_slot(body, room_field="room", errors=errors)
    slot_fields.pop("_id")
    parent_fields = {
        "day": validate_day(body.get("day"), errors),
        "classId": _reference(body, "classId", errors),
    }
    if errors:
        raise ValidationError(errors)
    return slot_fields, parent_fields


# ----------------- Read path -----------------

def serialize(value):
    """Convert ObjectIds to strings and mirror ``_id`` as ``id``."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {k: serialize(v) for k, v in value.items()}
        if "_id" in out and "id" not in out:
            out["id"] = out["_id"]
        return out
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    return value


def _semester(class_ref):
    if isinstance(class_ref, dict) and class_ref.get("semester"):
        return class_ref["semester"]
    return 1


def flatten(timetable, year=None):
    """One flat record per embedded slot; academicYear is derived, not stored."""
    year = year or datetime.now().year
    timetable_id = str(timetable["_id"])
    class_ref = serialize(timetable.get("classId"))
    records = []
    for slot in timetable.get("timeSlots") or []:
        slot_id = str(slot["_id"])
        composite = encode(timetable_id, slot_id)
        records.append({
            "_id": composite,
            "id": composite,
            "timetableId": timetable_id,
            "slotId": slot_id,
            "classId": class_ref,
            "day": timetable.get("day"),
            "startTime": slot.get("startTime"),
            "endTime": slot.get("endTime"),
            "subjectId": serialize(slot.get("subjectId")),
            "facultyId": serialize(slot.get("facultyId")),
            "room": slot.get("classroom"),
            "isActive": True,
            "semester": _semester(class_ref),
            "academicYear": year,
        })
    return records


def flatten_all(timetables, year=None):
    records = []
    for timetable in timetables:
        records.extend(flatten(timetable, year=year))
    records.sort(key=lambda r: (DAY_INDEX.get(r["day"], len(DAYS)), r["startTime"] or ""))
    return records
