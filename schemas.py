"""
Database Schemas for the Fitness Challenges API

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase of the class name. References to other documents are stringified
ObjectIds.
"""
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)

Role = Literal["super_admin", "gym_owner", "client"]

RuleType = Literal["user_stat", "challenge_completion", "training_count", "custom"]
RuleOperator = Literal["equals", "greater_than", "less_than", "contains", "between"]

# Tagged variant for rule operands; bool is listed first so True never becomes 1
RuleScalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
RuleValue = Union[RuleScalar, List[RuleScalar]]


class UserStats(BaseModel):
    total_challenges: int = 0
    completed_challenges: int = 0
    total_calories_burned: int = 0
    total_workout_minutes: int = 0
    score: int = 0


class User(BaseModel):
    """
    Collection: "user"
    A community member. Friendship is symmetric: both sides list each other.
    """
    username: str = Field(..., min_length=3, max_length=30, description="Unique display name")
    email: str = Field(..., description="Contact email")
    role: Role = Field("client", description="super_admin | gym_owner | client")
    is_active: bool = Field(True)
    stats: UserStats = Field(default_factory=UserStats)
    badges: List[str] = Field(default_factory=list, description="Owned badge ids, in award order")
    friends: List[str] = Field(default_factory=list, description="Friend user ids")


class Training(BaseModel):
    """
    Collection: "training"
    A logged training session
    """
    user_id: str = Field(..., description="User id (stringified ObjectId)")
    workout_type: str = Field(..., description="Type of workout, e.g., run, pushups, yoga")
    total_duration: int = Field(..., ge=1, le=1440, description="Duration in minutes")
    calories_burned: int = Field(0, ge=0)
    intensity: Literal["low", "moderate", "high", "very_high"] = Field("moderate")
    challenge_id: Optional[str] = Field(None, description="Challenge this session counts toward")
    notes: Optional[str] = Field(None, max_length=500)


class Rule(BaseModel):
    """A single predicate over a dotted field of a user's stats snapshot."""
    type: RuleType
    field: str = Field(..., min_length=1, description="Dotted path, e.g. stats.training_count")
    operator: RuleOperator
    value: RuleValue
    value2: Optional[RuleValue] = Field(None, description="Upper bound, required for 'between'")

    @model_validator(mode="after")
    def _between_needs_upper_bound(self):
        if self.operator == "between" and self.value2 is None:
            raise ValueError("operator 'between' requires value2")
        return self


BadgeCategory = Literal["achievement", "milestone", "social", "special", "seasonal"]
BadgeRarity = Literal["common", "rare", "epic", "legendary"]


class Badge(BaseModel):
    """
    Collection: "badge"
    An achievement awarded when every rule holds for a user's snapshot
    """
    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=200)
    icon: str = Field(..., min_length=1)
    category: BadgeCategory
    rules: List[Rule] = Field(..., min_length=1, description="AND-combined rules")
    points: int = Field(0, ge=0, le=1000)
    rarity: BadgeRarity = Field("common")
    is_active: bool = Field(True)
    is_automatic: bool = Field(True, description="False: only awarded manually")


class BadgeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    icon: Optional[str] = Field(None, min_length=1)
    category: Optional[BadgeCategory] = None
    rules: Optional[List[Rule]] = Field(None, min_length=1)
    points: Optional[int] = Field(None, ge=0, le=1000)
    rarity: Optional[BadgeRarity] = None
    is_active: Optional[bool] = None
    is_automatic: Optional[bool] = None


class Duration(BaseModel):
    value: int = Field(..., ge=1, le=365)
    unit: Literal["days", "weeks", "months"]


class Rewards(BaseModel):
    points: int = Field(0, ge=0, le=10000)
    badges: List[str] = Field(default_factory=list)


class Participant(BaseModel):
    """Embedded in Challenge. completed_at is set once progress reaches 100."""
    user: str
    joined_at: datetime
    progress: int = Field(0, ge=0, le=100)
    completed_at: Optional[datetime] = None


ChallengeCategory = Literal[
    "weight_loss", "muscle_gain", "endurance", "flexibility", "general_fitness", "rehabilitation"
]


class Challenge(BaseModel):
    """
    Collection: "challenge"
    A goal users join and progress through; participants are embedded
    """
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    type: Literal["individual", "team", "social"]
    difficulty: Literal["easy", "medium", "hard", "extreme"]
    category: ChallengeCategory
    duration: Duration
    gym: Optional[str] = Field(None, description="Owning gym id")
    rewards: Rewards = Field(default_factory=Rewards)
    is_active: bool = Field(True)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_participants: Optional[int] = Field(None, ge=1, le=10000)
    tags: List[str] = Field(default_factory=list, max_length=10)


class ChallengeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    type: Optional[Literal["individual", "team", "social"]] = None
    difficulty: Optional[Literal["easy", "medium", "hard", "extreme"]] = None
    category: Optional[ChallengeCategory] = None
    duration: Optional[Duration] = None
    rewards: Optional[Rewards] = None
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_participants: Optional[int] = Field(None, ge=1, le=10000)
    tags: Optional[List[str]] = Field(None, max_length=10)


class Invitation(BaseModel):
    """
    Collection: "invitation"
    A friend's request to join a challenge; deleted once accepted or rejected
    """
    challenge: str
    sender: str
    recipient: str
    status: Literal["pending", "accepted", "rejected"] = "pending"


class Caller(BaseModel):
    """The authenticated user a request runs on behalf of."""
    id: str
    role: Role = "client"

    @property
    def is_admin(self) -> bool:
        return self.role == "super_admin"
