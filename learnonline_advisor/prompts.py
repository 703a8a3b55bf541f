"""
Prompt composition for the AI learning coach.

The prompt is built from fixed sections in a fixed order: role preamble,
metrics, courses, quests, notifications, recent conversation, and the
student's question with the response instruction.
"""

from __future__ import annotations

from typing import Sequence

from learnonline_advisor.content_safety import sanitize_for_prompt
from learnonline_advisor.insights import DEFAULT_CONFIG, derive_notifications
from learnonline_advisor.types import AdvisorConfig, ConversationMessage, StateSnapshot

NO_METRICS = "No metrics available."
NO_COURSES = "No active courses recorded."
NO_QUESTS = "No quests assigned."
NO_NOTIFICATIONS = "No outstanding notifications."
FIRST_QUESTION = "This is the first question in the conversation."


def _bullets(lines: list[str], empty: str) -> str:
    return "- " + "\n- ".join(lines) if lines else f"- {empty}"


def metrics_lines(snapshot: StateSnapshot) -> list[str]:
    """One line per known metric. Unknown metrics are omitted, not zeroed."""
    metrics = snapshot.metrics
    lines = []
    if metrics.course_progress is not None:
        lines.append(f"Course progress: {metrics.course_progress}%")
    if metrics.academic_standing is not None:
        lines.append(f"Academic standing: {metrics.academic_standing}%")
    if metrics.gamification_level is not None:
        lines.append(f"Gamification level: {metrics.gamification_level}%")
    if snapshot.streak is not None:
        lines.append(f"Current streak: {snapshot.streak} days")
    return lines


def course_lines(snapshot: StateSnapshot) -> list[str]:
    lines = []
    for course in snapshot.titled_courses:
        progress = f"{course.progress}% complete" if course.progress is not None else "progress unknown"
        due = course.due_next or "no immediate deadline"
        lines.append(f"{sanitize_for_prompt(course.title)}: {progress}, next: {sanitize_for_prompt(due)}")
    return lines


def quest_lines(snapshot: StateSnapshot) -> list[str]:
    return [
        f"{sanitize_for_prompt(q.title)}: {'completed' if q.completed else 'pending'} ({q.xp} XP)"
        for q in snapshot.titled_quests
    ]


def render_history(history: Sequence[ConversationMessage], turns: int) -> str:
    """The last ``turns`` messages as Student/Coach lines."""
    recent = list(history)[-turns:] if turns > 0 else []
    return "\n".join(
        f"{'Student' if m.role == 'user' else 'Coach'}: {m.content}" for m in recent
    )


def compose(
    snapshot: StateSnapshot,
    conversation: Sequence[ConversationMessage],
    question: str,
    config: AdvisorConfig = DEFAULT_CONFIG,
) -> str:
    """Build the full coach prompt for ``question``."""
    name = sanitize_for_prompt(snapshot.profile.name or "the student", max_length=80)

    notifications = derive_notifications(snapshot, config)[: config.prompt_notification_count]
    notification_lines = [
        f"{sanitize_for_prompt(n.title)}: {sanitize_for_prompt(n.body)}" for n in notifications
    ]

    history = render_history(conversation, config.prompt_history_turns)

    sections = [
        (
            f"You are an AI learning coach guiding a university student named {name}. "
            "Be proactive, motivational, and specific. Provide step-by-step guidance "
            "and reference the student's current data."
        ),
        "Student metrics:\n" + _bullets(metrics_lines(snapshot), NO_METRICS),
        "Courses:\n" + _bullets(course_lines(snapshot), NO_COURSES),
        "Quests:\n" + _bullets(quest_lines(snapshot), NO_QUESTS),
        "Notifications:\n" + _bullets(notification_lines, NO_NOTIFICATIONS),
        f"Conversation so far:\n{history}" if history else FIRST_QUESTION,
        (
            f'The student asks: "{question}". Respond with an actionable plan, including '
            "prioritised steps, suggested study blocks, and motivational encouragement. "
            "End by inviting the student to follow up if they need more help."
        ),
    ]
    return "\n\n".join(sections)
