import os
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(BASE_DIR, ".env"))
load_dotenv()


def split_origins(value):
    return [o.strip() for o in (value or "").split(",") if o.strip()]


def load_config():
    """Read runtime settings from the environment."""
    running_on_render = bool(os.environ.get("RENDER"))
    origins = split_origins(os.environ.get(
        "FRONTEND_ORIGIN",
        "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"
    ))
    origins.extend([r"http://localhost:\d+", r"http://127\.0\.0\.1:\d+"])
    return {
        "SECRET_KEY": os.environ.get("FLASK_SECRET_KEY", "change-this-secret"),
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "None" if running_on_render else "Lax",
        "SESSION_COOKIE_SECURE": running_on_render,
        "MONGO_URI": os.environ.get("MONGO_URI", "mongodb://localhost:27017").strip(),
        "MONGO_DB_NAME": os.environ.get("MONGO_DB_NAME", "smart_timetable").strip() or "smart_timetable",
        "FRONTEND_ORIGINS": origins,
        "DEFAULT_ADMIN_PASSWORD": os.environ.get("DEFAULT_ADMIN_PASSWORD", "admin123"),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO").upper(),
        "PORT": int(os.environ.get("PORT", 5001)),
        "DEBUG": os.environ.get("FLASK_ENV") != "production",
    }
