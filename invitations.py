"""
Challenge invitations between friends.

An invitation is pending until the recipient accepts (and joins) or rejects;
either way the record is deleted. There is at most one pending invitation per
(challenge, recipient).
"""

import logging
from typing import Iterable, List

import challenges
import users
from database import create_document, get_documents, object_id
from errors import ConflictError, NotFoundError, UnauthorizedError
from locks import CHALLENGE_LOCKS, INVITATION_LOCKS

logger = logging.getLogger(__name__)


def _pending(db, challenge_id: str, recipient_id: str):
    return db["invitation"].find_one(
        {"challenge": challenge_id, "recipient": recipient_id, "status": "pending"}
    )


def invite_friends(db, challenge_id, sender_id, recipient_ids: Iterable[str]) -> List[dict]:
    """
    Invite each recipient, in order.

    The first recipient that fails a check stops the batch with that error;
    invitations already created for earlier recipients are kept.
    """
    challenge = challenges.get_challenge(db, challenge_id)
    cid = str(challenge["_id"])
    sender = users.get_user(db, sender_id)
    sid = str(sender["_id"])

    if not challenges.has_participant(challenge, sid):
        raise UnauthorizedError("You must take part in the challenge to invite friends")

    wanted = list(dict.fromkeys(str(r) for r in recipient_ids))
    recipients = []
    for rid in wanted:
        recipient = db["user"].find_one({"_id": object_id(rid, "user id")})
        if not recipient:
            raise NotFoundError("One or more users to invite do not exist",
                                resource_type="user", resource_id=rid)
        recipients.append(recipient)

    created = []
    for recipient in recipients:
        rid = str(recipient["_id"])
        name = recipient.get("username", rid)
        with INVITATION_LOCKS.hold(f"{cid}:{rid}"):
            if not users.are_friends(sender, recipient):
                raise UnauthorizedError(f"{name} is not your friend")
            if _pending(db, cid, rid):
                raise ConflictError(f"An invitation is already pending for {name}")
            if challenges.has_participant(challenges.get_challenge(db, cid), rid):
                raise ConflictError(f"{name} is already participating in this challenge")

            inserted_id = create_document(db, "invitation", {
                "challenge": cid,
                "sender": sid,
                "recipient": rid,
                "status": "pending",
            })
        created.append(db["invitation"].find_one({"_id": object_id(inserted_id)}))
        logger.info("User %s invited %s to challenge %s", sid, rid, cid)

    return created


def list_invitations(db, user_id) -> List[dict]:
    return get_documents(db, "invitation", {"recipient": str(user_id), "status": "pending"})


def _get_pending_for(db, invitation_id, user_id) -> dict:
    invitation = db["invitation"].find_one({
        "_id": object_id(invitation_id, "invitation id"),
        "recipient": str(user_id),
        "status": "pending",
    })
    if not invitation:
        raise NotFoundError("Invitation not found or already processed",
                            resource_type="invitation", resource_id=invitation_id)
    return invitation


def accept_invitation(db, invitation_id, user_id) -> dict:
    """
    Join the invited challenge and drop the invitation.

    Join preconditions are checked now, not when the invitation was sent. If
    the user already joined some other way the invitation is dropped and a
    conflict raised.
    """
    invitation = _get_pending_for(db, invitation_id, user_id)

    with CHALLENGE_LOCKS.hold(invitation["challenge"]):
        invitation = _get_pending_for(db, invitation_id, user_id)
        challenge = challenges.get_challenge(db, invitation["challenge"])

        if challenges.has_participant(challenge, user_id):
            db["invitation"].delete_one({"_id": invitation["_id"]})
            raise ConflictError("You are already participating in this challenge")

        challenges.check_can_join(challenge, user_id)
        updated = challenges.add_participant(db, challenge, user_id)
        db["invitation"].delete_one({"_id": invitation["_id"]})

    logger.info("User %s accepted invitation %s", user_id, invitation_id)
    return updated


def reject_invitation(db, invitation_id, user_id) -> None:
    invitation = _get_pending_for(db, invitation_id, user_id)
    db["invitation"].delete_one({"_id": invitation["_id"]})
    logger.info("User %s rejected invitation %s", user_id, invitation_id)
