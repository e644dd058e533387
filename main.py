import logging
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import badges
import challenges
import config
import invitations
import users
from database import get_db, serialize
from errors import AppError, AuthenticationError, NotFoundError, UnauthorizedError
from logging_config import setup_logging
from schemas import Badge, BadgeUpdate, Caller, Challenge, ChallengeUpdate, Training

setup_logging(config.LOG_LEVEL, config.LOG_JSON)
logger = logging.getLogger(__name__)

app = FastAPI(title="Fitness Challenges API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
def handle_app_error(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------- Identity ----------

def get_caller(x_user_id: Optional[str] = Header(None), db=Depends(get_db)) -> Caller:
    """The session layer in front of this API sets X-User-Id."""
    if not x_user_id:
        raise AuthenticationError("You are not logged in")
    try:
        user = users.get_user(db, x_user_id)
    except NotFoundError:
        raise AuthenticationError("The user for this session no longer exists")
    if not user.get("is_active", True):
        raise UnauthorizedError("Your account has been deactivated")
    return Caller(id=str(user["_id"]), role=user.get("role", "client"))


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise UnauthorizedError("You do not have permission to perform this action")
    return caller


# ---------- Models (request/response) ----------
class CreateUserRequest(BaseModel):
    username: str
    email: str


class LogTrainingRequest(BaseModel):
    workout_type: str
    total_duration: int = Field(..., ge=1, le=1440)
    calories_burned: int = Field(0, ge=0)
    intensity: Literal["low", "moderate", "high", "very_high"] = "moderate"
    challenge_id: Optional[str] = None
    notes: Optional[str] = None


class UpdateProgressRequest(BaseModel):
    progress: int = Field(..., ge=0, le=100)


class InviteFriendsRequest(BaseModel):
    friend_ids: List[str] = Field(..., min_length=1)


# ---------- Routes ----------
@app.get("/")
def root():
    return {"message": "Fitness Challenges API running"}


@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = get_db()
        resp["database"] = "✅ Available"
        resp["connection_status"] = "Connected"
        resp["collections"] = db.list_collection_names()[:10]
        resp["database"] = "✅ Connected & Working"
    except AppError as e:
        resp["database"] = f"❌ Error: {e.message[:80]}"
    except Exception as e:
        resp["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return resp


@app.post("/api/users", status_code=201)
def create_user(payload: CreateUserRequest, db=Depends(get_db)):
    return serialize(users.create_user(db, payload.username, payload.email))


@app.post("/api/trainings", status_code=201)
def log_training(payload: LogTrainingRequest, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    training = Training(user_id=caller.id, **payload.model_dump())
    stored = users.log_training(db, training)

    earned = []
    try:
        earned = badges.check_and_award(db, caller.id)
    except Exception:
        logger.exception("Badge check after training failed for user %s", caller.id)

    return {
        "message": "Training logged",
        "training": serialize(stored),
        "earned_badges": [serialize(b) for b in earned],
    }


# ----- Badges -----
@app.post("/api/badges", status_code=201)
def create_badge(payload: Badge, caller: Caller = Depends(require_admin), db=Depends(get_db)):
    return serialize(badges.create_badge(db, payload, caller.id))


@app.get("/api/badges/{badge_id}")
def get_badge(badge_id: str, db=Depends(get_db)):
    return serialize(badges.get_badge(db, badge_id))


@app.put("/api/badges/{badge_id}")
def update_badge(badge_id: str, payload: BadgeUpdate, caller: Caller = Depends(require_admin),
                 db=Depends(get_db)):
    return serialize(badges.update_badge(db, badge_id, payload))


@app.delete("/api/badges/{badge_id}")
def delete_badge(badge_id: str, caller: Caller = Depends(require_admin), db=Depends(get_db)):
    badges.delete_badge(db, badge_id)
    return {"message": "Badge deleted"}


@app.post("/api/badges/check/{user_id}")
def check_and_award_badges(user_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    if not caller.is_admin and caller.id != user_id:
        raise UnauthorizedError("You can only check your own badges")
    earned = badges.check_and_award(db, user_id)
    return {
        "message": f"{len(earned)} new badge(s) earned" if earned else "No new badges yet",
        "earned_badges": [serialize(b) for b in earned],
        "count": len(earned),
    }


@app.post("/api/badges/{badge_id}/award/{user_id}")
def award_badge(badge_id: str, user_id: str, caller: Caller = Depends(require_admin),
                db=Depends(get_db)):
    badges.award_manually(db, badge_id, user_id)
    return {"message": "Badge awarded"}


@app.delete("/api/badges/{badge_id}/remove/{user_id}")
def revoke_badge(badge_id: str, user_id: str, caller: Caller = Depends(require_admin),
                 db=Depends(get_db)):
    badges.revoke(db, badge_id, user_id)
    return {"message": "Badge removed"}


@app.post("/api/badges/{badge_id}/test/{user_id}")
def test_badge_rules(badge_id: str, user_id: str, caller: Caller = Depends(require_admin),
                     db=Depends(get_db)):
    return badges.preview_eligibility(db, badge_id, user_id)


# ----- Challenges -----
@app.post("/api/challenges", status_code=201)
def create_challenge(payload: Challenge, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    return challenges.serialize_challenge(challenges.create_challenge(db, payload, caller.id))


@app.get("/api/challenges/{challenge_id}")
def get_challenge(challenge_id: str, db=Depends(get_db)):
    return challenges.serialize_challenge(challenges.get_challenge(db, challenge_id))


@app.put("/api/challenges/{challenge_id}")
def update_challenge(challenge_id: str, payload: ChallengeUpdate,
                     caller: Caller = Depends(get_caller), db=Depends(get_db)):
    return challenges.serialize_challenge(
        challenges.update_challenge(db, challenge_id, payload, caller)
    )


@app.delete("/api/challenges/{challenge_id}")
def delete_challenge(challenge_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    challenges.delete_challenge(db, challenge_id, caller)
    return {"message": "Challenge deleted"}


@app.get("/api/challenges/{challenge_id}/leaderboard")
def get_leaderboard(challenge_id: str, limit: int = 10, db=Depends(get_db)):
    challenge = challenges.get_challenge(db, challenge_id)
    return {
        "challenge": {"id": str(challenge["_id"]), "title": challenge["title"]},
        "leaderboard": challenges.leaderboard(challenge, limit),
    }


@app.post("/api/challenges/{challenge_id}/join")
def join_challenge(challenge_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    challenge = challenges.join_challenge(db, challenge_id, caller.id)
    return {"message": "You joined the challenge", "challenge": challenges.serialize_challenge(challenge)}


@app.post("/api/challenges/{challenge_id}/leave")
def leave_challenge(challenge_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    challenges.leave_challenge(db, challenge_id, caller.id)
    return {"message": "You left the challenge"}


@app.put("/api/challenges/{challenge_id}/progress")
def update_progress(challenge_id: str, payload: UpdateProgressRequest,
                    caller: Caller = Depends(get_caller), db=Depends(get_db)):
    challenge = challenges.update_progress(db, challenge_id, caller.id, payload.progress)
    participant = challenges.find_participant(challenge, caller.id)
    is_completed = participant.get("completed_at") is not None
    return {
        "message": "Challenge completed!" if is_completed else "Progress updated",
        "is_completed": is_completed,
        "challenge": challenges.serialize_challenge(challenge),
    }


@app.post("/api/challenges/{challenge_id}/invite")
def invite_friends(challenge_id: str, payload: InviteFriendsRequest,
                   caller: Caller = Depends(get_caller), db=Depends(get_db)):
    created = invitations.invite_friends(db, challenge_id, caller.id, payload.friend_ids)
    return {
        "message": f"Invitations sent to {len(created)} friend(s)",
        "invitations": [serialize(i) for i in created],
    }


# ----- Invitations -----
@app.get("/api/invitations")
def list_invitations(caller: Caller = Depends(get_caller), db=Depends(get_db)):
    return [serialize(i) for i in invitations.list_invitations(db, caller.id)]


@app.post("/api/invitations/{invitation_id}/accept")
def accept_invitation(invitation_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    challenge = invitations.accept_invitation(db, invitation_id, caller.id)
    return {"message": "Invitation accepted", "challenge": challenges.serialize_challenge(challenge)}


@app.post("/api/invitations/{invitation_id}/reject")
def reject_invitation(invitation_id: str, caller: Caller = Depends(get_caller), db=Depends(get_db)):
    invitations.reject_invitation(db, invitation_id, caller.id)
    return {"message": "Invitation rejected"}


if __name__ == "__main__":
    import uvicorn
    port = config.PORT
    uvicorn.run(app, host="0.0.0.0", port=port)
