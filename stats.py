"""
User statistics snapshot.

Rules are evaluated against a frozen view of the user document whose ``stats``
mapping is overlaid with counts derived from the training and challenge
stores. The derived ``completed_challenges`` replaces the persisted counter,
which can drift.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Iterator

import users


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


class UserStatsSnapshot(Mapping):
    """Read-only mapping handed to the rule evaluator."""

    def __init__(self, user_id: str, data: Mapping):
        self.user_id = user_id
        self._data = _freeze(data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def stats(self) -> Mapping:
        return self._data.get("stats", MappingProxyType({}))

    def __repr__(self) -> str:
        return f"UserStatsSnapshot(user_id={self.user_id!r}, stats={dict(self.stats)!r})"


def count_completed_challenges(db, user_id: str) -> int:
    """Challenges in which this user's own participant record is completed."""
    count = 0
    for challenge in db["challenge"].find({}):
        if any(
            p.get("user") == user_id and p.get("completed_at") is not None
            for p in challenge.get("participants", [])
        ):
            count += 1
    return count


def build_snapshot(db, user_id) -> UserStatsSnapshot:
    user = users.get_user(db, user_id)
    uid = str(user["_id"])

    data = {k: v for k, v in user.items() if k != "_id"}
    data["id"] = uid
    data["stats"] = {
        **user.get("stats", {}),
        "training_count": users.count_trainings(db, uid),
        "completed_challenges": count_completed_challenges(db, uid),
        "total_training_minutes": users.sum_training_minutes(db, uid),
    }
    return UserStatsSnapshot(uid, data)
