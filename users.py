"""
User and training store operations used by the core.
"""

import logging
from typing import List

from pydantic import ValidationError as PydanticValidationError

from database import create_document, find_by_id, object_id, utcnow
from errors import ConflictError, NotFoundError, from_pydantic
from schemas import Training, User

logger = logging.getLogger(__name__)


def get_user(db, user_id) -> dict:
    user = find_by_id(db, "user", user_id)
    if not user:
        raise NotFoundError("User not found", resource_type="user", resource_id=user_id)
    return user


def create_user(db, username: str, email: str, role: str = "client") -> dict:
    try:
        user = User(username=username, email=email, role=role)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Invalid user")
    if db["user"].find_one({"username": user.username}):
        raise ConflictError(f"Username '{user.username}' is already taken")
    inserted_id = create_document(db, "user", user)
    return get_user(db, inserted_id)


def increment_stats(db, user_id, **deltas: int) -> None:
    """Atomically add ``deltas`` to the named ``stats`` counters."""
    if not deltas:
        return
    result = db["user"].update_one(
        {"_id": object_id(user_id)},
        {
            "$inc": {f"stats.{name}": delta for name, delta in deltas.items()},
            "$set": {"updated_at": utcnow()},
        },
    )
    if result.matched_count == 0:
        raise NotFoundError("User not found", resource_type="user", resource_id=user_id)


def set_badges(db, user_id, badge_ids: List[str], score_delta: int = 0) -> None:
    """Replace the badge list; callers hold the user's lock."""
    update = {"$set": {"badges": list(badge_ids), "updated_at": utcnow()}}
    if score_delta:
        update["$inc"] = {"stats.score": score_delta}
    result = db["user"].update_one({"_id": object_id(user_id)}, update)
    if result.matched_count == 0:
        raise NotFoundError("User not found", resource_type="user", resource_id=user_id)


def are_friends(a: dict, b: dict) -> bool:
    """Friendship is stored on both sides; either side is enough to tell."""
    a_id, b_id = str(a["_id"]), str(b["_id"])
    return b_id in a.get("friends", []) or a_id in b.get("friends", [])


# ---------- Trainings ----------

def log_training(db, training: Training) -> dict:
    get_user(db, training.user_id)
    inserted_id = create_document(db, "training", training)
    increment_stats(
        db,
        training.user_id,
        total_workout_minutes=training.total_duration,
        total_calories_burned=training.calories_burned,
    )
    logger.info("Training %s logged for user %s (%s min)",
                inserted_id, training.user_id, training.total_duration)
    return db["training"].find_one({"_id": object_id(inserted_id)})


def count_trainings(db, user_id) -> int:
    return db["training"].count_documents({"user_id": str(user_id)})


def sum_training_minutes(db, user_id) -> int:
    return sum(t.get("total_duration", 0) for t in db["training"].find({"user_id": str(user_id)}))
