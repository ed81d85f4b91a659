import logging

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure

from backend.errors import NotFound, ValidationError
from backend.slots import DAY_INDEX, DAYS, SLOT_FIELDS, parse_object_id

logger = logging.getLogger(__name__)

CLASS_FIELDS = ("className", "courseCode", "department", "semester")
SUBJECT_FIELDS = ("subjectName", "subjectCode", "credits")
FACULTY_FIELDS = ("name", "email", "department")


def connect_mongo(uri, db_name):
    client = MongoClient(uri, serverSelectionTimeoutMS=5000)
    try:
        client.admin.command("ping")
    except Exception:
        client.close()
        logger.exception("[storage] MongoDB unavailable at startup")
        raise
    logger.info("[storage] Using MongoDB database '%s'", db_name)
    return client, client[db_name]


def build_filter(filters):
    """Translate list query parameters into a Mongo filter."""
    query = {}
    errors = []
    class_id = filters.get("classId")
    if class_id:
        query["classId"] = parse_object_id(class_id)
        if query["classId"] is None:
            errors.append("classId is not a valid id")
    day = filters.get("day")
    if day:
        if day not in DAY_INDEX:
            errors.append(f"day must be one of {', '.join(DAYS)}")
        query["day"] = day
    faculty_id = filters.get("facultyId")
    if faculty_id:
        query["timeSlots.facultyId"] = parse_object_id(faculty_id)
        if query["timeSlots.facultyId"] is None:
            errors.append("facultyId is not a valid id")
    if errors:
        raise ValidationError(errors)
    return query


def timetable_sort_key(doc):
    starts = [s.get("startTime") or "" for s in doc.get("timeSlots") or []]
    return (DAY_INDEX.get(doc.get("day"), len(DAYS)), min(starts) if starts else "")


class TimetableStore:
    """Timetable documents and their embedded time slots."""

    def __init__(self, db):
        self.db = db
        self.timetables = db["timetables"]
        self.classes = db["classes"]
        self.subjects = db["subjects"]
        self.users = db["users"]

    def ensure_indexes(self):
        """Create indexes; returns False when existing duplicates block the unique one."""
        self.timetables.create_index("timeSlots.facultyId", name="slot_faculty")
        try:
            self.timetables.create_index(
                [("classId", ASCENDING), ("day", ASCENDING)],
                unique=True,
                name="class_day_unique"
            )
        except OperationFailure as exc:
            logger.warning(
                "[storage] Unique (classId, day) index not built, duplicate timetables exist: %s", exc
            )
            return False
        return True

    # ----------------- Documents -----------------

    def search(self, filters, page=1, page_size=10):
        query = build_filter(filters)
        # Weekday order is not lexical: order on a slim projection, then load the page.
        keys = list(self.timetables.find(query, {"day": 1, "timeSlots.startTime": 1}).sort("_id", ASCENDING))
        keys.sort(key=timetable_sort_key)
        start = (page - 1) * page_size
        page_ids = [k["_id"] for k in keys[start:start + page_size]]
        if not page_ids:
            return [], len(keys)
        by_id = {doc["_id"]: doc for doc in self.timetables.find({"_id": {"$in": page_ids}})}
        return [by_id[i] for i in page_ids if i in by_id], len(keys)

    def get(self, timetable_id):
        doc = self.timetables.find_one({"_id": timetable_id})
        if doc is None:
            raise NotFound("Timetable not found")
        return doc

    def find_by_class_and_day(self, class_id, day):
        return self.timetables.find_one({"classId": class_id, "day": day})

    def create(self, doc):
        result = self.timetables.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def update(self, timetable_id, fields):
        if not fields:
            return self.get(timetable_id)
        doc = self.timetables.find_one_and_update(
            {"_id": timetable_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Timetable not found")
        return doc

    def delete(self, timetable_id):
        return self.timetables.delete_one({"_id": timetable_id}).deleted_count == 1

    # ----------------- Embedded slots -----------------

    def append_slot(self, timetable_id, slot):
        doc = self.timetables.find_one_and_update(
            {"_id": timetable_id},
            {"$push": {"timeSlots": slot}},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Timetable not found")
        return doc

    def remove_slot(self, timetable_id, slot_id):
        """Pull one slot; a timetable left without slots is deleted."""
        doc = self.timetables.find_one_and_update(
            {"_id": timetable_id, "timeSlots._id": slot_id},
            {"$pull": {"timeSlots": {"_id": slot_id}}},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Timetable or time slot not found")
        if not doc.get("timeSlots"):
            # Guarded on emptiness so a concurrent append survives.
            self.timetables.delete_one({"_id": timetable_id, "timeSlots": {"$size": 0}})
            logger.info("[storage] Timetable %s had no slots left and was deleted", timetable_id)
        return doc

    def update_slot(self, timetable_id, slot_id, slot_fields, parent_fields=None):
        changes = {f"timeSlots.$.{k}": v for k, v in slot_fields.items() if k in SLOT_FIELDS}
        changes.update(parent_fields or {})
        doc = self.timetables.find_one_and_update(
            {"_id": timetable_id, "timeSlots._id": slot_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Timetable or time slot not found")
        return doc

    def upsert_slot(self, class_id, day, slot):
        """
        Append ``slot`` to the timetable for (class_id, day), creating that
        timetable when it does not exist yet. Returns (doc, created).

        The unique (classId, day) index makes concurrent first inserts collide;
        the loser retries once and lands on the winner's document.
        """
        for attempt in range(2):
            try:
                before = self.timetables.find_one_and_update(
                    {"classId": class_id, "day": day},
                    {"$push": {"timeSlots": slot}},
                    upsert=True,
                    return_document=ReturnDocument.BEFORE
                )
                break
            except DuplicateKeyError:
                if attempt:
                    raise
                logger.warning("[storage] Concurrent create for %s/%s, retrying", class_id, day)
        return self.find_by_class_and_day(class_id, day), before is None

    # ----------------- References -----------------

    def _lookup(self, collection, ids, fields):
        if not ids:
            return {}
        projection = {field: 1 for field in fields}
        return {doc["_id"]: doc for doc in collection.find({"_id": {"$in": list(ids)}}, projection)}

    def populate(self, docs):
        """Replace class/subject/faculty ids with the referenced documents."""
        class_ids, subject_ids, user_ids = set(), set(), set()
        for doc in docs:
            if doc.get("classId") is not None:
                class_ids.add(doc["classId"])
            for slot in doc.get("timeSlots") or []:
                if slot.get("subjectId") is not None:
                    subject_ids.add(slot["subjectId"])
                if slot.get("facultyId") is not None:
                    user_ids.add(slot["facultyId"])

        classes = self._lookup(self.classes, class_ids, CLASS_FIELDS)
        subjects = self._lookup(self.subjects, subject_ids, SUBJECT_FIELDS)
        faculty = self._lookup(self.users, user_ids, FACULTY_FIELDS)

        populated = []
        for doc in docs:
            out = dict(doc)
            out["classId"] = classes.get(doc.get("classId"), doc.get("classId"))
            out["timeSlots"] = []
            for slot in doc.get("timeSlots") or []:
                slot = dict(slot)
                slot["subjectId"] = subjects.get(slot.get("subjectId"), slot.get("subjectId"))
                slot["facultyId"] = faculty.get(slot.get("facultyId"), slot.get("facultyId"))
                out["timeSlots"].append(slot)
            populated.append(out)
        return populated

    def populate_one(self, doc):
        return self.populate([doc])[0]
