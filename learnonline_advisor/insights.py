"""
Notification and coaching-insight derivation.

Everything here is a pure function of a :class:`StateSnapshot`: the same
snapshot always yields the same notifications, insights, greeting and
quick prompts. Nothing reads the clock, so timestamps are display labels
only.
"""

from __future__ import annotations

import logging
from typing import Any, get_args

from learnonline_advisor.coalesce import chain, coalesce
from learnonline_advisor.types import (
    AdvisorConfig,
    Course,
    Derivation,
    Insight,
    Notification,
    NotificationPriority,
    StateSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = AdvisorConfig()

NO_UPDATES_ID = "no-updates"

_PRIORITIES = set(get_args(NotificationPriority))

_NOTE_ID = chain("id")
_NOTE_TITLE = chain("title", "heading")
_NOTE_BODY = chain("description", "message", "body")
_NOTE_TIME = chain("time", "timestamp")
_NOTE_PRIORITY = chain("priority", "type")


def _lowest_progress(courses: list[Course], below: int) -> Course | None:
    """First course (by original order) with the lowest known progress under ``below``."""
    candidates = [c for c in courses if c.progress is not None and c.progress < below]
    if not candidates:
        return None
    return min(candidates, key=lambda c: c.progress)


def _coerce_priority(value: Any) -> NotificationPriority:
    text = str(value).strip().lower()
    return text if text in _PRIORITIES else "info"  # type: ignore[return-value]


def _pass_through(index: int, record: Any) -> Notification:
    return Notification(
        id=str(coalesce(record, _NOTE_ID, f"api-{index}")),
        title=str(coalesce(record, _NOTE_TITLE, "Update", skip_empty=True)),
        body=str(
            coalesce(
                record,
                _NOTE_BODY,
                "New activity detected in your learning portal.",
                skip_empty=True,
            )
        ),
        timestamp=str(coalesce(record, _NOTE_TIME, "Just now", skip_empty=True)),
        priority=_coerce_priority(coalesce(record, _NOTE_PRIORITY, "info", skip_empty=True)),
    )


# ============================================================
#  Notifications
# ============================================================


def derive_notifications(
    snapshot: StateSnapshot, config: AdvisorConfig = DEFAULT_CONFIG
) -> list[Notification]:
    """Derive the capped notification list for a snapshot.

    Rules run in a fixed order: gateway alerts, the first open quest, the
    first course with a due milestone, the lowest-progress course under the
    focus threshold, and the streak. When none fire, the list holds only the
    synthetic ``no-updates`` entry.
    """
    items = [_pass_through(i, r) for i, r in enumerate(snapshot.raw_notifications)]

    pending = next((q for q in snapshot.titled_quests if not q.completed), None)
    if pending is not None:
        items.append(
            Notification(
                id=f"quest-{pending.id}",
                title="Daily quest still open",
                body=f"{pending.title} is worth {pending.xp} XP. Complete it to keep your streak going!",
                timestamp="Today",
                priority="quest",
            )
        )

    upcoming = next((c for c in snapshot.titled_courses if c.due_next), None)
    if upcoming is not None:
        items.append(
            Notification(
                id=f"course-{upcoming.course_id}",
                title="Upcoming course milestone",
                body=f"{upcoming.title} has {upcoming.due_next}. Prep a focused session today.",
                timestamp="This week",
                priority="course",
            )
        )

    focus = _lowest_progress(snapshot.titled_courses, config.notification_focus_threshold)
    if focus is not None:
        items.append(
            Notification(
                id=f"progress-{focus.course_id}",
                title="Focus course recommended",
                body=(
                    f"{focus.title} is at {focus.progress}% progress. "
                    "Schedule a revision block to boost it above 70%."
                ),
                timestamp="Action needed",
                priority="focus",
            )
        )

    streak = snapshot.streak
    if streak is not None and streak > 0:
        items.append(
            Notification(
                id="streak",
                title="Streak tracker",
                body=f"You're on a {streak}-day streak. A quick recap session today will keep it alive!",
                timestamp="Daily",
                priority="celebration",
            )
        )

    if not items:
        return [
            Notification(
                id=NO_UPDATES_ID,
                title="You're all caught up",
                body="No new alerts for now. Check back later or ask the AI Advisor for a study plan.",
                timestamp="",
                priority="info",
            )
        ]

    return items[: config.max_notifications]


def actionable(notifications: list[Notification]) -> list[Notification]:
    """Notifications excluding the synthetic ``no-updates`` entry."""
    return [n for n in notifications if n.id != NO_UPDATES_ID]


# ============================================================
#  Insights
# ============================================================


def derive_insights(
    snapshot: StateSnapshot,
    notifications: list[Notification],
    config: AdvisorConfig = DEFAULT_CONFIG,
) -> list[Insight]:
    """Derive up to ``max_insights`` insights in priority order.

    The order is the ladder: course focus, open quests, academic standing,
    a focus/course notification, then the "maintain momentum" fallback.
    """
    insights: list[Insight] = []

    course = _lowest_progress(snapshot.titled_courses, config.insight_focus_threshold)
    if course is not None:
        due = f" with {course.due_next}" if course.due_next else ""
        insights.append(
            Insight(
                id=f"focus-{course.course_id}",
                title=f"Boost {course.title}",
                description=(
                    f"Progress is at {course.progress}%{due}. "
                    "A targeted review session will raise your overall standing."
                ),
                action=(
                    f"Schedule a {config.focus_session_minutes}-minute deep work block "
                    "and summarize what you learn."
                ),
                focus_label=course.title,
            )
        )

    pending = [q for q in snapshot.titled_quests if not q.completed]
    if pending:
        plural = "s" if len(pending) > 1 else ""
        total_xp = sum(q.xp for q in pending)
        insights.append(
            Insight(
                id="quests",
                title="Capitalize on open quests",
                description=(
                    f"{len(pending)} quest{plural} remain. Completing them adds "
                    f"{total_xp} XP and boosts your streak."
                ),
                action=f'Start with "{pending[0].title}" for a quick win.',
                focus_label=pending[0].title,
            )
        )

    standing = snapshot.metrics.academic_standing
    if standing is not None and standing < config.academic_standing_threshold:
        insights.append(
            Insight(
                id="academic",
                title="Raise academic standing",
                description=(
                    f"Your academic standing is {standing}%. Consistent study blocks "
                    "and spaced review can lift this above 80%."
                ),
                action="Plan 3 focused sessions this week with recap notes after each.",
            )
        )

    alert = next((n for n in notifications if n.priority in ("focus", "course")), None)
    if alert is not None:
        insights.append(
            Insight(
                id="notification",
                title=alert.title,
                description=alert.body,
                action="Address this alert first, then review your other courses.",
                focus_label=alert.title,
            )
        )

    if not insights:
        insights.append(
            Insight(
                id="momentum",
                title="Maintain your momentum",
                description=(
                    "You're on track. Keep reinforcing recent lessons and ask me for "
                    "fresh challenges whenever you're ready."
                ),
                action="Request a new stretch goal or deeper practice plan.",
            )
        )

    return insights[: config.max_insights]


def derive(snapshot: StateSnapshot, config: AdvisorConfig = DEFAULT_CONFIG) -> Derivation:
    """Derive notifications and insights together."""
    notifications = derive_notifications(snapshot, config)
    insights = derive_insights(snapshot, notifications, config)
    logger.debug(
        "Derived %d notifications and %d insights", len(notifications), len(insights)
    )
    return Derivation(notifications=notifications, insights=insights)


# ============================================================
#  Greeting and quick prompts
# ============================================================


def compose_greeting(snapshot: StateSnapshot, insights: list[Insight]) -> str:
    """The assistant greeting kept at the head of the conversation."""
    name = (snapshot.profile.name or "").split()
    first_name = name[0] if name else "there"

    progress = snapshot.metrics.course_progress
    if progress is not None:
        progress_statement = f"You're averaging {progress}% across courses."
    else:
        progress_statement = "I'll watch your course progress as it updates."

    streak = snapshot.streak
    if streak:
        streak_statement = f"Your learning streak is {streak} day{'' if streak == 1 else 's'}."
    else:
        streak_statement = "Let's build a daily learning streak together."

    if insights:
        focus_statement = f"First focus: {insights[0].title}."
    else:
        focus_statement = "Ask me for a plan whenever you need one."

    return (
        f"Hey {first_name}! I'm tracking your study signals. "
        f"{progress_statement} {streak_statement} {focus_statement}"
    )


def suggest_prompts(
    snapshot: StateSnapshot,
    insights: list[Insight],
    config: AdvisorConfig = DEFAULT_CONFIG,
) -> list[str]:
    """Distinct quick-prompt suggestions, top insight first."""
    prompts: list[str] = []
    if insights and insights[0].focus_label:
        prompts.append(f"Help me make progress on {insights[0].focus_label}.")

    course = _lowest_progress(snapshot.titled_courses, below=101)
    if course is not None:
        prompts.append(
            f"Create a study plan to raise {course.title} from {course.progress}% progress."
        )

    pending = next((q for q in snapshot.titled_quests if not q.completed), None)
    if pending is not None:
        prompts.append(f'Guide me through completing the quest "{pending.title}" today.')

    if not prompts:
        prompts.append("Build a 3-day study plan based on my latest progress.")

    return list(dict.fromkeys(prompts))[: config.max_quick_prompts]
