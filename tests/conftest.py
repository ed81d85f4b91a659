import mongomock
import pytest
from bson import ObjectId
from werkzeug.security import generate_password_hash

from backend.app import create_app


@pytest.fixture
def db():
    return mongomock.MongoClient()["smart_timetable_test"]


@pytest.fixture
def app(db):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DEFAULT_ADMIN_PASSWORD": "admin123",
        "LOG_LEVEL": "WARNING",
    }, db=db)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["timetable_store"]


@pytest.fixture
def refs(db):
    """Classes, subjects and faculty that timetables point at."""
    ids = {key: ObjectId() for key in ("C1", "C2", "S1", "S2", "F1", "F2")}
    db["classes"].insert_many([
        {"_id": ids["C1"], "className": "CSE-A", "courseCode": "CSE", "department": "CS", "semester": 3},
        {"_id": ids["C2"], "className": "ECE-B", "courseCode": "ECE", "department": "EC"},
    ])
    db["subjects"].insert_many([
        {"_id": ids["S1"], "subjectName": "Databases", "subjectCode": "CS301", "credits": 4},
        {"_id": ids["S2"], "subjectName": "Signals", "subjectCode": "EC202", "credits": 3},
    ])
    db["users"].insert_many([
        {"_id": ids["F1"], "username": "f1", "name": "Dr. Rao", "email": "rao@uni.edu", "department": "CS",
         "role": "faculty", "password_hash": generate_password_hash("faculty123")},
        {"_id": ids["F2"], "username": "f2", "name": "Dr. Sen", "email": "sen@uni.edu", "department": "EC",
         "role": "faculty", "password_hash": generate_password_hash("faculty123")},
    ])
    return ids


@pytest.fixture
def admin_client(client):
    resp = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert resp.status_code == 200
    return client


@pytest.fixture
def faculty_client(app, refs):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": "rao@uni.edu", "password": "faculty123"})
    assert resp.status_code == 200
    return client


@pytest.fixture
def flat_body(refs):
    def _make(**overrides):
        body = {
            "classId": str(refs["C1"]),
            "day": "Monday",
            "subjectId": str(refs["S1"]),
            "facultyId": str(refs["F1"]),
            "startTime": "09:00",
            "endTime": "10:00",
            "room": "A101",
        }
        body.update(overrides)
        return body
    return _make
