"""
Pydantic models for the LearnOnline advisory engine.

Wire-facing models accept the camelCase field names the LearnOnline
gateway emits and expose Pythonic snake_case attributes.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# ============================================================
#  Configuration
# ============================================================


class AdvisorConfig(BaseModel):
    """Thresholds and caps used by derivation, feed ranking and the session."""

    max_notifications: int = 7
    max_insights: int = 4
    notification_focus_threshold: int = 60
    insight_focus_threshold: int = 85
    academic_standing_threshold: int = 75
    trending_likes_threshold: int = 20
    max_tags: int = 6
    max_history: int = 20
    prompt_history_turns: int = 6
    prompt_notification_count: int = 5
    default_cooldown_seconds: int = 30
    cooldown_tick_seconds: float = 1.0
    focus_session_minutes: int = 45
    max_quick_prompts: int = 3


class ClientConfig(BaseModel):
    """Connection settings for the LearnOnline gateway."""

    base_url: str = "http://localhost:8080/api"
    token: str | None = None
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Build a config from ``LEARNONLINE_*`` environment variables."""
        values: dict[str, Any] = {}
        if os.environ.get("LEARNONLINE_API_URL"):
            values["base_url"] = os.environ["LEARNONLINE_API_URL"]
        if os.environ.get("LEARNONLINE_API_TOKEN"):
            values["token"] = os.environ["LEARNONLINE_API_TOKEN"]
        if os.environ.get("LEARNONLINE_TIMEOUT"):
            values["timeout"] = float(os.environ["LEARNONLINE_TIMEOUT"])
        return cls(**values)


# ============================================================
#  State snapshot
# ============================================================


class Profile(BaseModel):
    """The learner's public profile."""

    name: str | None = None
    streak: int | None = None
    coins: int | None = None
    role: str | None = None

    model_config = {"populate_by_name": True}


class Metrics(BaseModel):
    """Named dashboard metrics. ``None`` means unknown, never zero."""

    course_progress: int | None = Field(None, alias="courseProgress")
    academic_standing: int | None = Field(None, alias="academicStanding")
    gamification_level: int | None = Field(None, alias="gamificationLevel")
    current_streak: int | None = Field(None, alias="currentStreak")

    model_config = {"populate_by_name": True}


class Quest(BaseModel):
    """A daily quest. Untitled quests are kept but never surfaced."""

    id: int | str | None = None
    title: str | None = None
    xp: int = Field(0, ge=0)
    completed: bool = False


class Course(BaseModel):
    """An active course with its completion progress."""

    course_id: int | str | None = Field(None, alias="courseId")
    title: str | None = None
    progress: int | None = Field(None, ge=0, le=100)
    due_next: str | None = Field(None, alias="dueNext")
    instructor: str | None = None

    model_config = {"populate_by_name": True}


def _valid_entries(model: type[BaseModel], value: Any, field: str) -> Any:
    """Validate list entries one by one, dropping those that do not parse."""
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    entries = []
    for index, entry in enumerate(value):
        try:
            entries.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning("Dropping invalid %s entry %d: %s", field, index, e.error_count())
    return entries


class StateSnapshot(BaseModel):
    """One immutable read of the learner's full state.

    The gateway serves ``null`` for empty collections; those read as empty.
    """

    profile: Profile = Field(default_factory=Profile, alias="user")
    metrics: Metrics = Field(default_factory=Metrics)
    quests: list[Quest] = Field(default_factory=list, alias="dailyQuests")
    courses: list[Course] = Field(default_factory=list, alias="activeCourses")
    raw_notifications: list[Any] = Field(default_factory=list, alias="notifications")
    raw_feed: list[Any] | None = Field(None, alias="researchFeed")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("profile", "metrics", mode="before")
    @classmethod
    def _null_mapping(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("raw_notifications", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("quests", mode="before")
    @classmethod
    def _valid_quests(cls, value: Any) -> Any:
        return _valid_entries(Quest, value, "quest")

    @field_validator("courses", mode="before")
    @classmethod
    def _valid_courses(cls, value: Any) -> Any:
        return _valid_entries(Course, value, "course")

    @property
    def streak(self) -> int | None:
        """Current streak, falling back to the profile streak."""
        if self.metrics.current_streak is not None:
            return self.metrics.current_streak
        return self.profile.streak

    @property
    def titled_quests(self) -> list[Quest]:
        """Quests that can be named to the learner."""
        return [q for q in self.quests if q.title and q.id is not None]

    @property
    def titled_courses(self) -> list[Course]:
        """Courses that can be named to the learner."""
        return [c for c in self.courses if c.title and c.course_id is not None]


# ============================================================
#  Derived advisory output
# ============================================================


NotificationPriority = Literal["quest", "course", "focus", "celebration", "info"]


class Notification(BaseModel):
    """A derived notification reporting learner state."""

    id: str
    title: str
    body: str
    timestamp: str
    priority: NotificationPriority = "info"


class Insight(BaseModel):
    """A ranked coaching recommendation."""

    id: str
    title: str
    description: str
    action: str | None = None
    focus_label: str | None = Field(None, alias="focusLabel")

    model_config = {"populate_by_name": True}


class Derivation(BaseModel):
    """Result of deriving notifications and insights from one snapshot."""

    notifications: list[Notification] = []
    insights: list[Insight] = []


# ============================================================
#  Feed
# ============================================================


FilterMode = Literal["all", "collaboration", "mine", "trending"]
SortMode = Literal["recent", "popular"]


class FeedStats(BaseModel):
    """Engagement counters for a feed post."""

    likes: int = Field(0, ge=0)
    comments: int = Field(0, ge=0)
    collaborations: int = Field(0, ge=0)


class FeedPost(BaseModel):
    """A research feed post in canonical shape."""

    id: str
    order: int
    title: str
    summary: str
    category: str
    author_name: str = Field(alias="authorName")
    author_role: str = Field("", alias="authorRole")
    timestamp: str
    image: str | None = None
    link: str | None = None
    tags: list[str] = []
    stats: FeedStats = Field(default_factory=FeedStats)
    is_collaboration: bool = Field(False, alias="isCollaboration")
    is_mine: bool = Field(False, alias="isMine")
    trending: bool = False

    model_config = {"populate_by_name": True}


# ============================================================
#  Conversation
# ============================================================


class ConversationMessage(BaseModel):
    """A message in the advisor conversation."""

    id: str
    role: Literal["user", "assistant"]
    content: str


class ChatReply(BaseModel):
    """Assistant reply. The gateway names the text ``response``."""

    text: str | None = Field(
        None, validation_alias=AliasChoices("text", "response", "message")
    )


# ============================================================
#  Events
# ============================================================


class AdvisorEvent(BaseModel):
    """An event emitted by the orchestrator to presentation layers."""

    type: str
    data: dict[str, Any] = {}
