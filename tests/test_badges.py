import pytest

import badges
import users
from errors import ConflictError, NotFoundError, ValidationError

CENTURY = [{"type": "training_count", "field": "stats.training_count",
            "operator": "greater_than", "value": 100}]
ALWAYS = [{"type": "custom", "field": "is_active", "operator": "equals", "value": True}]


def test_century_club_is_awarded_once(db, make_user, make_badge, log_trainings):
    user = make_user()
    badge = make_badge(CENTURY, name="Century Club")
    log_trainings(user, 101)

    earned = badges.check_and_award(db, user["_id"])

    assert [b["name"] for b in earned] == ["Century Club"]
    refreshed = users.get_user(db, user["_id"])
    assert refreshed["badges"] == [str(badge["_id"])]
    assert refreshed["stats"]["score"] == 25
    assert badges.get_badge(db, badge["_id"])["earned_count"] == 1

    assert badges.check_and_award(db, user["_id"]) == []
    refreshed = users.get_user(db, user["_id"])
    assert refreshed["badges"] == [str(badge["_id"])]
    assert refreshed["stats"]["score"] == 25
    assert badges.get_badge(db, badge["_id"])["earned_count"] == 1


def test_not_yet_eligible(db, make_user, make_badge, log_trainings):
    user = make_user()
    make_badge(CENTURY)
    log_trainings(user, 100)

    assert badges.check_and_award(db, user["_id"]) == []
    assert users.get_user(db, user["_id"])["stats"]["score"] == 0


def test_several_badges_in_store_order(db, make_user, make_badge):
    user = make_user()
    first = make_badge(ALWAYS, name="First", points=10)
    second = make_badge(ALWAYS, name="Second", points=5)

    earned = badges.check_and_award(db, user["_id"])

    assert [b["name"] for b in earned] == ["First", "Second"]
    refreshed = users.get_user(db, user["_id"])
    assert refreshed["badges"] == [str(first["_id"]), str(second["_id"])]
    assert refreshed["stats"]["score"] == 15


def test_manual_and_inactive_badges_are_skipped(db, make_user, make_badge):
    user = make_user()
    make_badge(ALWAYS, name="Manual only", is_automatic=False)
    make_badge(ALWAYS, name="Retired", is_active=False)

    assert badges.check_and_award(db, user["_id"]) == []


def test_corrupt_stored_badge_does_not_block_the_others(db, make_user, make_badge):
    user = make_user(score=5)
    good = make_badge([{"type": "user_stat", "field": "stats.score", "operator": "greater_than", "value": 1}],
                      name="good")
    bad = make_badge(ALWAYS, name="bad")
    db["badge"].update_one({"_id": bad["_id"]}, {"$set": {"rules": [
        {"type": "user_stat", "field": "stats.score", "operator": "between", "value": 1},
    ]}})

    earned = badges.check_and_award(db, user["_id"])

    assert [b["name"] for b in earned] == ["good"]
    assert users.get_user(db, user["_id"])["badges"] == [str(good["_id"])]


def test_check_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        badges.check_and_award(db, "5f43a1e2b9d3c2a1f0e9d8c7")


# ---------- definitions ----------

def test_create_badge_stores_defaults(make_badge, admin):
    badge = make_badge(ALWAYS, name="Welcome")

    assert badge["earned_count"] == 0
    assert badge["created_by"] == str(admin["_id"])
    assert badge["is_active"] is True
    assert badge["is_automatic"] is True
    assert badge["rarity"] == "common"


def test_duplicate_name_conflicts(make_badge):
    make_badge(ALWAYS, name="Welcome")
    with pytest.raises(ConflictError):
        make_badge(ALWAYS, name="Welcome")


@pytest.mark.parametrize("overrides", [
    {"rules": []},
    {"rules": [{"type": "user_stat", "field": "stats.score", "operator": "between", "value": 1}]},
    {"rules": [{"type": "user_stat", "field": "stats.score", "operator": "near", "value": 1}]},
    {"points": 1001},
    {"points": -1},
    {"name": "x" * 51},
    {"category": "legendary"},
])
def test_invalid_definitions_are_rejected(db, make_badge, overrides):
    data = {"rules": ALWAYS, **overrides}
    with pytest.raises(ValidationError) as exc_info:
        make_badge(**data)
    assert exc_info.value.details["field_errors"]
    assert db["badge"].count_documents({}) == 0


def test_update_badge(db, make_badge):
    badge = make_badge(ALWAYS, name="Welcome", description="Hello")

    updated = badges.update_badge(db, badge["_id"], {"points": 40, "description": None})

    assert updated["points"] == 40
    assert updated["description"] == "Hello"


def test_rename_onto_existing_name_conflicts(db, make_badge):
    make_badge(ALWAYS, name="Taken")
    badge = make_badge(ALWAYS, name="Free")

    with pytest.raises(ConflictError):
        badges.update_badge(db, badge["_id"], {"name": "Taken"})
    assert badges.update_badge(db, badge["_id"], {"name": "Free"})["name"] == "Free"


# ---------- manual ledger ----------

def test_award_then_revoke_restores_score(db, make_user, make_badge):
    user = make_user(score=10)
    badge = make_badge(ALWAYS, is_automatic=False)

    badges.award_manually(db, badge["_id"], user["_id"])
    assert users.get_user(db, user["_id"])["stats"]["score"] == 35
    assert badges.get_badge(db, badge["_id"])["earned_count"] == 1

    badges.revoke(db, badge["_id"], user["_id"])
    refreshed = users.get_user(db, user["_id"])
    assert refreshed["stats"]["score"] == 10
    assert refreshed["badges"] == []
    assert badges.get_badge(db, badge["_id"])["earned_count"] == 0


def test_revoke_then_award_restores_score(db, make_user, make_badge):
    user = make_user()
    badge = make_badge(ALWAYS)
    badges.check_and_award(db, user["_id"])

    badges.revoke(db, badge["_id"], user["_id"])
    badges.award_manually(db, badge["_id"], user["_id"])

    refreshed = users.get_user(db, user["_id"])
    assert refreshed["stats"]["score"] == 25
    assert refreshed["badges"] == [str(badge["_id"])]


def test_award_owned_badge_conflicts(db, make_user, make_badge):
    user = make_user()
    badge = make_badge(ALWAYS)
    badges.award_manually(db, badge["_id"], user["_id"])

    with pytest.raises(ConflictError):
        badges.award_manually(db, badge["_id"], user["_id"])
    assert users.get_user(db, user["_id"])["stats"]["score"] == 25


def test_revoke_unowned_badge_conflicts(db, make_user, make_badge):
    user = make_user()
    badge = make_badge(ALWAYS)

    with pytest.raises(ConflictError):
        badges.revoke(db, badge["_id"], user["_id"])


def test_earned_count_never_goes_negative(db, make_user, make_badge):
    user = make_user()
    badge = make_badge(ALWAYS)
    badges.award_manually(db, badge["_id"], user["_id"])
    db["badge"].update_one({"_id": badge["_id"]}, {"$set": {"earned_count": 0}})

    badges.revoke(db, badge["_id"], user["_id"])

    assert badges.get_badge(db, badge["_id"])["earned_count"] == 0


def test_delete_badge_strips_holders_but_keeps_points(db, make_user, make_badge):
    holder, other = make_user(), make_user()
    badge = make_badge(ALWAYS)
    keep = make_badge(ALWAYS, is_automatic=False)
    badges.award_manually(db, badge["_id"], holder["_id"])
    badges.award_manually(db, keep["_id"], holder["_id"])

    badges.delete_badge(db, badge["_id"])

    refreshed = users.get_user(db, holder["_id"])
    assert refreshed["badges"] == [str(keep["_id"])]
    assert refreshed["stats"]["score"] == 50
    assert users.get_user(db, other["_id"])["badges"] == []
    with pytest.raises(NotFoundError):
        badges.get_badge(db, badge["_id"])


# ---------- dry run ----------

def test_preview_eligibility_does_not_award(db, make_user, make_badge, log_trainings):
    user = make_user()
    badge = make_badge(CENTURY, name="Century Club")
    log_trainings(user, 101)

    result = badges.preview_eligibility(db, badge["_id"], user["_id"])

    assert result["is_eligible"] is True
    assert result["badge"]["name"] == "Century Club"
    assert result["user"]["id"] == str(user["_id"])
    assert result["user"]["stats"]["training_count"] == 101
    assert users.get_user(db, user["_id"])["badges"] == []
    assert badges.get_badge(db, badge["_id"])["earned_count"] == 0


def test_preview_eligibility_unknown_badge(db, make_user):
    with pytest.raises(NotFoundError):
        badges.preview_eligibility(db, "5f43a1e2b9d3c2a1f0e9d8c7", make_user()["_id"])
