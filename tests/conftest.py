import os
import uuid
from datetime import timedelta

os.environ.setdefault("DATABASE_BACKEND", "memory")

import pytest
from mongita import MongitaClientMemory

import badges
import challenges
import users
from database import utcnow
from schemas import Training


@pytest.fixture
def db():
    """A fresh in-memory database per test."""
    return MongitaClientMemory()[f"test_{uuid.uuid4().hex[:12]}"]


@pytest.fixture
def make_user(db):
    def _make(username=None, role="client", **stats):
        user = users.create_user(
            db,
            username or f"user_{uuid.uuid4().hex[:8]}",
            f"{uuid.uuid4().hex[:8]}@example.com",
            role=role,
        )
        if stats:
            db["user"].update_one(
                {"_id": user["_id"]},
                {"$set": {f"stats.{name}": value for name, value in stats.items()}},
            )
        return users.get_user(db, user["_id"])
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin", role="super_admin")


@pytest.fixture
def befriend(db):
    def _befriend(a, b):
        for me, other in ((a, b), (b, a)):
            current = users.get_user(db, me["_id"])
            db["user"].update_one(
                {"_id": current["_id"]},
                {"$set": {"friends": current.get("friends", []) + [str(other["_id"])]}},
            )
    return _befriend


@pytest.fixture
def make_challenge(db):
    def _make(creator, **overrides):
        data = {
            "title": "30 day plank",
            "description": "Hold a plank every day",
            "type": "individual",
            "difficulty": "medium",
            "category": "general_fitness",
            "duration": {"value": 30, "unit": "days"},
            "rewards": {"points": 50},
        }
        data.update(overrides)
        return challenges.create_challenge(db, data, str(creator["_id"]))
    return _make


@pytest.fixture
def make_badge(db, admin):
    def _make(rules, name=None, **overrides):
        data = {
            "name": name or f"badge_{uuid.uuid4().hex[:8]}",
            "description": "Test badge",
            "icon": "star.png",
            "category": "achievement",
            "rules": rules,
            "points": 25,
        }
        data.update(overrides)
        return badges.create_badge(db, data, str(admin["_id"]))
    return _make


@pytest.fixture
def log_trainings(db):
    def _log(user, count, minutes=30):
        for _ in range(count):
            users.log_training(db, Training(user_id=str(user["_id"]), workout_type="run",
                                            total_duration=minutes))
    return _log


@pytest.fixture
def past():
    return utcnow() - timedelta(days=1)


@pytest.fixture
def future():
    return utcnow() + timedelta(days=1)
