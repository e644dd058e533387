import pytest

import challenges
from errors import NotFoundError, ValidationError
from stats import build_snapshot, count_completed_challenges


def test_snapshot_overlays_derived_counts(db, make_user, log_trainings):
    user = make_user(score=40)
    log_trainings(user, 3, minutes=20)

    snapshot = build_snapshot(db, user["_id"])

    assert snapshot.user_id == str(user["_id"])
    assert snapshot["id"] == str(user["_id"])
    assert snapshot.stats["training_count"] == 3
    assert snapshot.stats["total_training_minutes"] == 60
    assert snapshot.stats["total_workout_minutes"] == 60
    assert snapshot.stats["score"] == 40
    assert "_id" not in snapshot


def test_completed_challenges_is_derived_not_persisted(db, make_user, make_challenge):
    user = make_user()
    uid = str(user["_id"])
    challenge = make_challenge(user)
    challenges.join_challenge(db, challenge["_id"], uid)
    challenges.update_progress(db, challenge["_id"], uid, 100)

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"stats.completed_challenges": 7}})

    snapshot = build_snapshot(db, uid)
    assert snapshot.stats["completed_challenges"] == 1


def test_only_the_users_own_completion_counts(db, make_user, make_challenge):
    finisher, other = make_user(), make_user()
    challenge = make_challenge(finisher)
    for user in (finisher, other):
        challenges.join_challenge(db, challenge["_id"], str(user["_id"]))
    challenges.update_progress(db, challenge["_id"], str(finisher["_id"]), 100)
    challenges.update_progress(db, challenge["_id"], str(other["_id"]), 99)

    assert count_completed_challenges(db, str(finisher["_id"])) == 1
    assert count_completed_challenges(db, str(other["_id"])) == 0


def test_snapshot_is_read_only(db, make_user):
    snapshot = build_snapshot(db, make_user()["_id"])

    with pytest.raises(TypeError):
        snapshot["role"] = "super_admin"
    with pytest.raises(TypeError):
        snapshot.stats["score"] = 1000


def test_snapshot_lists_become_tuples(db, make_user, befriend):
    a, b = make_user(), make_user()
    befriend(a, b)

    snapshot = build_snapshot(db, a["_id"])
    assert snapshot["friends"] == (str(b["_id"]),)
    assert snapshot["badges"] == ()


def test_snapshot_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        build_snapshot(db, "5f43a1e2b9d3c2a1f0e9d8c7")


def test_snapshot_for_malformed_id(db):
    with pytest.raises(ValidationError):
        build_snapshot(db, "not-an-id")
