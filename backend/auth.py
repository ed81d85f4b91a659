import logging
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from backend.errors import Forbidden, Unauthorized, ValidationError
from backend.slots import parse_object_id

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def users_collection():
    return current_app.extensions["mongo_db"]["users"]


def seed_admin(db, password):
    users = db["users"]
    if users.find_one({"role": "admin"}) is not None:
        return None
    admin = {
        "username": "admin",
        "email": "admin@timetable.local",
        "name": "Administrator",
        "role": "admin",
        "password_hash": generate_password_hash(password),
    }
    users.insert_one(admin)
    logger.info("[auth] Seeded default admin user")
    return admin


def get_current_user():
    if "current_user" in g:
        return g.current_user
    user = None
    user_id = parse_object_id(session.get("user_id")) if session.get("user_id") else None
    if user_id is not None:
        user = users_collection().find_one({"_id": user_id})
    g.current_user = user
    return user


def public_user(user):
    if not user:
        return None
    return {
        "_id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "name": user.get("name", user.get("username")),
        "role": user.get("role"),
        "department": user.get("department"),
    }


def require_auth(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not get_current_user():
            raise Unauthorized("Authentication required")
        return func(*args, **kwargs)
    return wrapper


def require_roles(*roles):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if not user:
                raise Unauthorized("Authentication required")
            if user.get("role") not in roles:
                if roles == ("admin",):
                    raise Forbidden("Access denied. Admin only.")
                raise Forbidden("Forbidden")
            return func(*args, **kwargs)
        return wrapper
    return decorator


@auth_bp.route("/login", methods=["POST"])
def auth_login():
    payload = request.get_json(silent=True) or {}
    login = (payload.get("email") or payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not login or not password:
        raise ValidationError("Email or username and password are required")

    user = users_collection().find_one({"$or": [{"email": login.lower()}, {"username": login}]})
    if not user or not check_password_hash(user.get("password_hash", ""), password):
        logger.warning("[auth] Failed login for %s", login)
        raise Unauthorized("Invalid credentials")

    session["user_id"] = str(user["_id"])
    logger.info("[auth] %s logged in", user.get("username") or user.get("email"))
    return jsonify({"success": True, "user": public_user(user)})


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def auth_logout():
    session.pop("user_id", None)
    return jsonify({"success": True})


@auth_bp.route("/me", methods=["GET"])
def auth_me():
    user = get_current_user()
    if not user:
        return jsonify({"authenticated": False}), 200
    return jsonify({"authenticated": True, "user": public_user(user)}), 200
