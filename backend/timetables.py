import logging

from flask import Blueprint, current_app, jsonify, request

from backend.auth import require_auth, require_roles
from backend.errors import NotFound, ValidationError
from backend import slots

logger = logging.getLogger(__name__)

timetables_bp = Blueprint("timetables", __name__)


def get_store():
    return current_app.extensions["timetable_store"]


def json_body():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def positive_int(name, default):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a positive integer")
    if value < 1:
        raise ValidationError(f"{name} must be a positive integer")
    return value


def document_response(doc, status_code=200):
    store = get_store()
    return jsonify({"success": True, "data": slots.serialize(store.populate_one(doc))}), status_code


def plain_id(raw):
    ref = slots.decode(raw)
    if ref.is_slot:
        raise NotFound("Timetable not found")
    return ref.timetable_id


@timetables_bp.route("", methods=["GET"])
@require_auth
def list_timetables():
    page = positive_int("page", 1)
    limit = positive_int("limit", 10)
    filters = {k: request.args.get(k) for k in ("classId", "day", "facultyId")}

    store = get_store()
    docs, total_docs = store.search(filters, page=page, page_size=limit)
    records = slots.flatten_all(store.populate(docs))
    logger.debug("[timetables] %d documents -> %d records (page %d)", len(docs), len(records), page)
    return jsonify({
        "success": True,
        "count": len(records),
        "total": len(records),
        "totalDocuments": total_docs,
        "page": page,
        "data": records
    })


@timetables_bp.route("/<timetable_id>", methods=["GET"])
@require_auth
def get_timetable(timetable_id):
    ref = slots.decode(timetable_id)
    store = get_store()
    doc = store.get(ref.timetable_id)
    if not ref.is_slot:
        return document_response(doc)

    for record in slots.flatten(store.populate_one(doc)):
        if record["slotId"] == str(ref.slot_id):
            return jsonify({"success": True, "data": record})
    raise NotFound("Time slot not found")


@timetables_bp.route("", methods=["POST"])
@require_roles("admin")
def create_timetable():
    body = json_body()
    store = get_store()

    if slots.body_shape(body) == "flat":
        class_id, day, slot = slots.build_flat_parts(body)
        doc, created = store.upsert_slot(class_id, day, slot)
        if created:
            logger.info("[timetables] Created timetable %s for class %s on %s", doc["_id"], class_id, day)
        else:
            logger.info("[timetables] Added slot %s to timetable %s", slot["_id"], doc["_id"])
        return document_response(doc, 201)

    doc = store.create(slots.build_timetable(body))
    logger.info("[timetables] Created timetable %s with %d slots", doc["_id"], len(doc["timeSlots"]))
    return document_response(doc, 201)


@timetables_bp.route("/<timetable_id>", methods=["PUT"])
@require_roles("admin")
def update_timetable(timetable_id):
    ref = slots.decode(timetable_id)
    body = json_body()
    store = get_store()

    if ref.is_slot:
        slot_fields, parent_fields = slots.build_slot_patch(body)
        doc = store.update_slot(ref.timetable_id, ref.slot_id, slot_fields, parent_fields)
        if len(doc.get("timeSlots") or []) > 1:
            logger.warning(
                "[timetables] Slot update on %s also set day/classId for %d sibling slots",
                ref.timetable_id, len(doc["timeSlots"]) - 1
            )
        logger.info("[timetables] Updated slot %s of timetable %s", ref.slot_id, ref.timetable_id)
        return document_response(doc)

    doc = store.update(ref.timetable_id, slots.build_document_patch(body))
    logger.info("[timetables] Updated timetable %s", ref.timetable_id)
    return document_response(doc)


@timetables_bp.route("/<timetable_id>", methods=["DELETE"])
@require_roles("admin")
def delete_timetable(timetable_id):
    ref = slots.decode(timetable_id)
    store = get_store()

    if ref.is_slot:
        store.remove_slot(ref.timetable_id, ref.slot_id)
        logger.info("[timetables] Deleted slot %s of timetable %s", ref.slot_id, ref.timetable_id)
        return jsonify({"success": True, "message": "Time slot deleted successfully"})

    if not store.delete(ref.timetable_id):
        raise NotFound("Timetable not found")
    logger.info("[timetables] Deleted timetable %s", ref.timetable_id)
    return jsonify({"success": True, "message": "Timetable deleted successfully"})


@timetables_bp.route("/<timetable_id>/timeslots", methods=["POST"])
@require_roles("admin")
def add_time_slot(timetable_id):
    slot = slots.build_slot(json_body())
    doc = get_store().append_slot(plain_id(timetable_id), slot)
    logger.info("[timetables] Added slot %s to timetable %s", slot["_id"], doc["_id"])
    return document_response(doc)


@timetables_bp.route("/<timetable_id>/timeslots/<slot_id>", methods=["DELETE"])
@require_roles("admin")
def remove_time_slot(timetable_id, slot_id):
    parsed_slot = slots.parse_object_id(slot_id)
    if parsed_slot is None:
        raise NotFound("Time slot not found")
    doc = get_store().remove_slot(plain_id(timetable_id), parsed_slot)
    logger.info("[timetables] Removed slot %s from timetable %s", parsed_slot, doc["_id"])
    return document_response(doc)
