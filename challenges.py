"""
Challenges and the participation state machine.

Per (challenge, user) a participant record moves through
not participating -> active -> completed, and may be removed again (leave)
only while still active. Completion happens once, on the first progress update
that reaches 100, and pays the challenge's reward points.

Joining, leaving and completing touch two documents: the challenge's embedded
participant list is written first, then the user's counters. If the second
write fails the first one is restored before the error propagates.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

import badges
import users
from database import create_document, find_by_id, to_utc, utcnow
from errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    from_pydantic,
)
from locks import CHALLENGE_LOCKS
from schemas import Caller, Challenge, ChallengeUpdate

logger = logging.getLogger(__name__)

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


# ---------- Participant accessors ----------

def find_participant(challenge: dict, user_id) -> Optional[dict]:
    uid = str(user_id)
    for participant in challenge.get("participants", []):
        if participant.get("user") == uid:
            return participant
    return None


def has_participant(challenge: dict, user_id) -> bool:
    return find_participant(challenge, user_id) is not None


def participant_count(challenge: dict) -> int:
    return len(challenge.get("participants", []))


def completed_count(challenge: dict) -> int:
    return sum(1 for p in challenge.get("participants", []) if p.get("completed_at") is not None)


def is_full(challenge: dict) -> bool:
    limit = challenge.get("max_participants")
    return bool(limit) and participant_count(challenge) >= limit


def leaderboard(challenge: dict, limit: Optional[int] = 10) -> List[dict]:
    """
    Completed participants first, then by progress descending, then by
    completion time, then by who joined first.
    """
    def key(p):
        completed_at = to_utc(p.get("completed_at"))
        return (
            completed_at is None,
            -p.get("progress", 0),
            completed_at or _NEVER,
            to_utc(p.get("joined_at")) or _NEVER,
        )

    ranked = sorted(challenge.get("participants", []), key=key)
    return ranked[:limit] if limit else ranked


def serialize_challenge(challenge: dict) -> dict:
    out = dict(challenge)
    out["id"] = str(out.pop("_id"))
    out["participant_count"] = participant_count(challenge)
    out["completed_count"] = completed_count(challenge)
    return out


# ---------- CRUD ----------

def get_challenge(db, challenge_id) -> dict:
    challenge = find_by_id(db, "challenge", challenge_id)
    if not challenge:
        raise NotFoundError("Challenge not found", resource_type="challenge", resource_id=challenge_id)
    return challenge


def _check_window(start, end) -> None:
    if start and end and to_utc(end) < to_utc(start):
        raise ValidationError("end_date must not be before start_date",
                              field_errors={"end_date": ["before start_date"]})


def create_challenge(db, data: Union[Challenge, dict], creator_id: str) -> dict:
    if not isinstance(data, Challenge):
        try:
            data = Challenge.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic(e, "Invalid challenge")
    _check_window(data.start_date, data.end_date)

    doc = data.model_dump()
    doc["start_date"] = to_utc(doc["start_date"])
    doc["end_date"] = to_utc(doc["end_date"])
    doc["created_by"] = str(creator_id)
    doc["participants"] = []

    inserted_id = create_document(db, "challenge", doc)
    logger.info("Challenge '%s' (%s) created by %s", data.title, inserted_id, creator_id)
    return get_challenge(db, inserted_id)


def _ensure_owner(challenge: dict, caller: Caller, action: str) -> None:
    if not caller.is_admin and challenge.get("created_by") != caller.id:
        raise UnauthorizedError(f"You are not allowed to {action} this challenge")


def update_challenge(db, challenge_id, changes: Union[ChallengeUpdate, dict], caller: Caller) -> dict:
    if not isinstance(changes, ChallengeUpdate):
        try:
            changes = ChallengeUpdate.model_validate(changes)
        except PydanticValidationError as e:
            raise from_pydantic(e, "Invalid challenge update")

    with CHALLENGE_LOCKS.hold(challenge_id):
        challenge = get_challenge(db, challenge_id)
        _ensure_owner(challenge, caller, "modify")

        fields = {k: v for k, v in changes.model_dump(exclude_unset=True).items() if v is not None}
        for key in ("start_date", "end_date"):
            if key in fields:
                fields[key] = to_utc(fields[key])
        _check_window(fields.get("start_date", challenge.get("start_date")),
                      fields.get("end_date", challenge.get("end_date")))

        if fields:
            fields["updated_at"] = utcnow()
            db["challenge"].update_one({"_id": challenge["_id"]}, {"$set": fields})
        return get_challenge(db, challenge_id)


def delete_challenge(db, challenge_id, caller: Caller) -> None:
    with CHALLENGE_LOCKS.hold(challenge_id):
        challenge = get_challenge(db, challenge_id)
        _ensure_owner(challenge, caller, "delete")
        db["challenge"].delete_one({"_id": challenge["_id"]})
        db["invitation"].delete_many({"challenge": str(challenge["_id"])})
    logger.info("Challenge %s deleted by %s", challenge_id, caller.id)


# ---------- Participation ----------

def _save_participants(db, challenge: dict, participants: List[dict]) -> None:
    db["challenge"].update_one(
        {"_id": challenge["_id"]},
        {"$set": {"participants": participants, "updated_at": utcnow()}},
    )


def check_can_join(challenge: dict, user_id, now: Optional[datetime] = None) -> None:
    """Join preconditions, in order; the first one that fails is raised."""
    now = now or utcnow()
    if not challenge.get("is_active", False):
        raise InvalidStateError("This challenge is no longer active")
    if has_participant(challenge, user_id):
        raise ConflictError("You are already participating in this challenge")
    if is_full(challenge):
        raise InvalidStateError("This challenge is full")
    start = to_utc(challenge.get("start_date"))
    if start and now < start:
        raise InvalidStateError("This challenge has not started yet")
    end = to_utc(challenge.get("end_date"))
    if end and now > end:
        raise InvalidStateError("This challenge has ended")


def add_participant(db, challenge: dict, user_id) -> dict:
    """Append a fresh participant record and count the challenge for the user.

    Callers hold the challenge lock and have run ``check_can_join``.
    """
    before = list(challenge.get("participants", []))
    record = {"user": str(user_id), "joined_at": utcnow(), "progress": 0, "completed_at": None}
    _save_participants(db, challenge, before + [record])
    try:
        users.increment_stats(db, user_id, total_challenges=1)
    except Exception:
        _save_participants(db, challenge, before)
        raise
    logger.info("User %s joined challenge %s", user_id, challenge["_id"])
    return get_challenge(db, challenge["_id"])


def join_challenge(db, challenge_id, user_id) -> dict:
    with CHALLENGE_LOCKS.hold(challenge_id):
        challenge = get_challenge(db, challenge_id)
        users.get_user(db, user_id)
        check_can_join(challenge, user_id)
        return add_participant(db, challenge, user_id)


def leave_challenge(db, challenge_id, user_id) -> None:
    with CHALLENGE_LOCKS.hold(challenge_id):
        challenge = get_challenge(db, challenge_id)
        participant = find_participant(challenge, user_id)
        if participant is None:
            raise NotFoundError("You are not participating in this challenge")
        if participant.get("completed_at") is not None:
            raise InvalidStateError("You have already completed this challenge")

        before = list(challenge["participants"])
        _save_participants(db, challenge, [p for p in before if p is not participant])
        try:
            users.increment_stats(db, user_id, total_challenges=-1)
        except Exception:
            _save_participants(db, challenge, before)
            raise
    logger.info("User %s left challenge %s", user_id, challenge_id)


def update_progress(db, challenge_id, user_id, progress: Union[int, float]) -> dict:
    """
    Store ``progress`` clamped into [0, 100].

    Reaching 100 for the first time completes the challenge: completed_at is
    stamped, the user's completed counter and score go up, and a badge check
    runs. A failing badge check is logged and does not undo the completion.
    """
    value = min(100, max(0, progress))

    with CHALLENGE_LOCKS.hold(challenge_id):
        challenge = get_challenge(db, challenge_id)
        participant = find_participant(challenge, user_id)
        if participant is None:
            raise NotFoundError("You are not participating in this challenge")

        completes = value == 100 and participant.get("completed_at") is None
        updated = {**participant, "progress": value}
        if completes:
            updated["completed_at"] = utcnow()

        before = list(challenge["participants"])
        _save_participants(db, challenge, [updated if p is participant else p for p in before])

        if completes:
            reward = challenge.get("rewards", {}).get("points", 0)
            try:
                users.increment_stats(db, user_id, completed_challenges=1, score=reward)
            except Exception:
                _save_participants(db, challenge, before)
                raise
            logger.info("User %s completed challenge %s (+%d points)", user_id, challenge_id, reward)

            try:
                badges.check_and_award(db, user_id)
            except Exception:
                logger.exception("Badge check after completing challenge %s failed for user %s",
                                 challenge_id, user_id)

        return get_challenge(db, challenge_id)
