"""
Badge definitions and the award ledger.

Owning a badge means its id is in ``user.badges``. Every award adds the badge's
points to ``user.stats.score`` and bumps ``badge.earned_count``; a revocation
undoes both, with ``earned_count`` never going below zero.
"""

import logging
from typing import List, Union

from pydantic import ValidationError as PydanticValidationError

import rules
import users
from database import create_document, find_by_id, get_documents, utcnow
from errors import ConflictError, NotFoundError, from_pydantic
from locks import BADGE_LOCKS, USER_LOCKS
from schemas import Badge, BadgeUpdate
from stats import build_snapshot

logger = logging.getLogger(__name__)


def get_badge(db, badge_id) -> dict:
    badge = find_by_id(db, "badge", badge_id)
    if not badge:
        raise NotFoundError("Badge not found", resource_type="badge", resource_id=badge_id)
    return badge


def create_badge(db, definition: Union[Badge, dict], creator_id: str) -> dict:
    if not isinstance(definition, Badge):
        try:
            definition = Badge.model_validate(definition)
        except PydanticValidationError as e:
            raise from_pydantic(e, "Invalid badge definition")

    if db["badge"].find_one({"name": definition.name}):
        raise ConflictError(f"A badge named '{definition.name}' already exists")

    data = definition.model_dump()
    data.update(created_by=str(creator_id), earned_count=0)
    inserted_id = create_document(db, "badge", data)
    logger.info("Badge '%s' (%s) created by %s", definition.name, inserted_id, creator_id)
    return get_badge(db, inserted_id)


def update_badge(db, badge_id, changes: Union[BadgeUpdate, dict]) -> dict:
    if not isinstance(changes, BadgeUpdate):
        try:
            changes = BadgeUpdate.model_validate(changes)
        except PydanticValidationError as e:
            raise from_pydantic(e, "Invalid badge update")

    badge = get_badge(db, badge_id)
    fields = changes.model_dump(exclude_unset=True)
    for key in [k for k, v in fields.items() if v is None]:
        # explicit nulls do not clear required fields
        fields.pop(key)

    if "name" in fields and fields["name"] != badge["name"]:
        clash = db["badge"].find_one({"name": fields["name"]})
        if clash and clash["_id"] != badge["_id"]:
            raise ConflictError(f"A badge named '{fields['name']}' already exists")

    if fields:
        fields["updated_at"] = utcnow()
        db["badge"].update_one({"_id": badge["_id"]}, {"$set": fields})
    return get_badge(db, badge_id)


def delete_badge(db, badge_id) -> None:
    """
    Remove the badge from every holder, then delete it.

    Points already earned stay on the holders' scores.
    """
    badge = get_badge(db, badge_id)
    bid = str(badge["_id"])

    holders = [u for u in get_documents(db, "user") if bid in u.get("badges", [])]
    for holder in holders:
        with USER_LOCKS.hold(holder["_id"]):
            current = users.get_user(db, holder["_id"])
            users.set_badges(db, current["_id"], [b for b in current.get("badges", []) if b != bid])

    db["badge"].delete_one({"_id": badge["_id"]})
    if holders:
        logger.warning("Badge '%s' deleted; %d holder(s) keep %d point(s) each",
                       badge["name"], len(holders), badge.get("points", 0))
    else:
        logger.info("Badge '%s' deleted", badge["name"])


def _bump_earned_count(db, badge_id, delta: int) -> None:
    with BADGE_LOCKS.hold(badge_id):
        badge = find_by_id(db, "badge", badge_id)
        if not badge:
            return
        count = max(0, badge.get("earned_count", 0) + delta)
        db["badge"].update_one(
            {"_id": badge["_id"]},
            {"$set": {"earned_count": count, "updated_at": utcnow()}},
        )


def check_and_award(db, user_id) -> List[dict]:
    """
    Award every active automatic badge the user now qualifies for.

    Returns the newly earned badges in store order. Badges already owned are
    skipped before evaluation, so repeated calls never award twice.
    """
    with USER_LOCKS.hold(user_id):
        user = users.get_user(db, user_id)
        owned = list(user.get("badges", []))
        snapshot = build_snapshot(db, user["_id"])

        earned = []
        for badge in get_documents(db, "badge", {"is_active": True, "is_automatic": True}):
            bid = str(badge["_id"])
            if bid in owned:
                continue
            if rules.evaluate(snapshot, badge.get("rules", [])):
                earned.append(badge)
                owned.append(bid)

        if earned:
            users.set_badges(db, user["_id"], owned,
                             score_delta=sum(b.get("points", 0) for b in earned))
            for badge in earned:
                _bump_earned_count(db, badge["_id"], 1)
            logger.info("User %s earned %d badge(s): %s", user["_id"], len(earned),
                        ", ".join(b["name"] for b in earned))

    return earned


def award_manually(db, badge_id, user_id) -> None:
    badge = get_badge(db, badge_id)
    bid = str(badge["_id"])
    with USER_LOCKS.hold(user_id):
        user = users.get_user(db, user_id)
        owned = list(user.get("badges", []))
        if bid in owned:
            raise ConflictError("User already owns this badge")
        users.set_badges(db, user["_id"], owned + [bid], score_delta=badge.get("points", 0))
        _bump_earned_count(db, badge["_id"], 1)
    logger.info("Badge '%s' awarded manually to user %s", badge["name"], user_id)


def revoke(db, badge_id, user_id) -> None:
    badge = get_badge(db, badge_id)
    bid = str(badge["_id"])
    with USER_LOCKS.hold(user_id):
        user = users.get_user(db, user_id)
        owned = list(user.get("badges", []))
        if bid not in owned:
            raise ConflictError("User does not own this badge")
        owned.remove(bid)
        users.set_badges(db, user["_id"], owned, score_delta=-badge.get("points", 0))
        _bump_earned_count(db, badge["_id"], -1)
    logger.info("Badge '%s' revoked from user %s", badge["name"], user_id)


def preview_eligibility(db, badge_id, user_id) -> dict:
    """Dry run: would this user qualify for the badge right now?"""
    badge = get_badge(db, badge_id)
    snapshot = build_snapshot(db, user_id)
    return {
        "badge": {"id": str(badge["_id"]), "name": badge["name"], "rules": badge["rules"]},
        "user": {"id": snapshot.user_id, "stats": dict(snapshot.stats)},
        "is_eligible": rules.evaluate(snapshot, badge.get("rules", [])),
    }
