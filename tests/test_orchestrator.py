"""
Tests for the advisory orchestrator.

Collaborators are injected as plain async callables, so no HTTP mocking
is needed here.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from learnonline_advisor import events as ev
from learnonline_advisor.client import RateLimitedError
from learnonline_advisor.orchestrator import FALLBACK_REPLY, AdvisoryOrchestrator
from learnonline_advisor.types import AdvisorConfig, ChatReply, StateSnapshot


DASHBOARD: dict[str, Any] = {
    "user": {"name": "Ada Lovelace", "streak": 2},
    "metrics": {"courseProgress": 55, "academicStanding": 60},
    "dailyQuests": [{"id": 1, "title": "Math", "xp": 10, "completed": False}],
    "activeCourses": [{"courseId": 1, "title": "Algebra", "progress": 40}],
    "researchFeed": [
        {"id": "a", "stats": {"likes": 5}},
        {"id": "b", "stats": {"likes": 25}},
    ],
}


class FakeGateway:
    """Records calls and returns scripted responses."""

    def __init__(self) -> None:
        self.states: list[Any] = [DASHBOARD]
        self.replies: list[Any] = [ChatReply(text="Plan: review Algebra.")]
        self.prompts: list[str] = []
        self.fetches = 0
        self.completed: list[Any] = []
        self.votes: list[tuple[Any, int]] = []

    async def fetch_state(self) -> Any:
        self.fetches += 1
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        return state

    async def send_prompt(self, text: str) -> Any:
        self.prompts.append(text)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, quest_id: Any) -> dict[str, Any]:
        self.completed.append(quest_id)
        return {"success": True}

    async def vote(self, poll_id: Any, option_index: int) -> dict[str, Any]:
        self.votes.append((poll_id, option_index))
        return {"success": True}

    async def create_post(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"id": "new", "title": payload["title"], "isMine": True}


def make(gateway: FakeGateway, config: AdvisorConfig | None = None) -> AdvisoryOrchestrator:
    return AdvisoryOrchestrator(
        gateway.fetch_state,
        gateway.send_prompt,
        submit_completion=gateway.complete,
        submit_vote=gateway.vote,
        submit_post=gateway.create_post,
        config=config,
    )


# ============================================================
#  Refresh
# ============================================================


@pytest.mark.asyncio
async def test_refresh_derives_everything() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)

    assert await advisor.refresh()

    assert advisor.snapshot is not None
    assert advisor.insights[0].focus_label == "Algebra"
    assert advisor.actionable_notifications
    assert advisor.messages[0].content.startswith("Hey Ada!")
    assert advisor.greeting == advisor.messages[0].content
    assert advisor.quick_prompts[0] == "Help me make progress on Algebra."
    assert [p.id for p in advisor.feed("trending")] == ["b"]
    assert [p.id for p in advisor.feed("all", "popular")] == ["b", "a"]
    await advisor.close()


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_state() -> None:
    """DataUnavailable: derived lists are kept and an error is surfaced."""
    gateway = FakeGateway()
    gateway.states = [DASHBOARD, httpx.ConnectError("connection refused")]
    advisor = make(gateway)
    failures: list[Any] = []
    advisor.on(ev.SNAPSHOT_FAILED, failures.append)

    await advisor.refresh()
    insights = advisor.insights

    assert not await advisor.refresh()
    assert advisor.insights == insights
    assert advisor.load_error is not None
    assert advisor.load_error.startswith("Unable to load dashboard")
    assert len(failures) == 1
    await advisor.close()


@pytest.mark.asyncio
async def test_refresh_rejects_malformed_payload() -> None:
    gateway = FakeGateway()
    gateway.states = [{"metrics": "broken"}]
    advisor = make(gateway)

    assert not await advisor.refresh()
    assert advisor.snapshot is None
    assert advisor.insights == []
    await advisor.close()


@pytest.mark.asyncio
async def test_refresh_accepts_null_collections() -> None:
    """The gateway serves null for empty collections; they read as empty."""
    gateway = FakeGateway()
    gateway.states = [
        {
            "user": None,
            "metrics": None,
            "dailyQuests": None,
            "activeCourses": None,
            "notifications": None,
            "researchFeed": None,
        }
    ]
    advisor = make(gateway)

    assert await advisor.refresh()

    assert advisor.load_error is None
    assert advisor.snapshot.quests == []
    assert advisor.snapshot.courses == []
    assert [i.id for i in advisor.insights] == ["momentum"]
    assert [n.id for n in advisor.notifications] == ["no-updates"]
    assert advisor.feed() == []
    await advisor.close()


@pytest.mark.asyncio
async def test_refresh_drops_invalid_entries_only() -> None:
    """One bad quest or course must not cost the learner the whole dashboard."""
    gateway = FakeGateway()
    gateway.states = [
        {
            **DASHBOARD,
            "dailyQuests": [
                {"id": 1, "title": "Math", "xp": -5},
                {"id": 2, "title": "Reading", "xp": 5},
            ],
            "activeCourses": [
                {"courseId": 1, "title": "Algebra", "progress": 150},
                {"courseId": 2, "title": "Poetry", "progress": 30},
                {"progress": 10},
            ],
        }
    ]
    advisor = make(gateway)

    assert await advisor.refresh()

    assert [q.id for q in advisor.snapshot.quests] == [2]
    assert len(advisor.snapshot.courses) == 2
    assert advisor.insights[0].focus_label == "Poetry"
    assert "quest-2" in [n.id for n in advisor.notifications]
    await advisor.close()


@pytest.mark.asyncio
async def test_stale_refresh_is_discarded() -> None:
    """A slow response that was superseded must not overwrite fresh state."""
    slow_started = asyncio.Event()
    release_slow = asyncio.Event()
    calls = 0

    async def fetch_state() -> dict[str, Any]:
        nonlocal calls
        calls += 1
        if calls == 1:
            slow_started.set()
            await release_slow.wait()
            return {"user": {"name": "Stale"}}
        return {"user": {"name": "Fresh"}}

    advisor = AdvisoryOrchestrator(fetch_state, FakeGateway().send_prompt)

    slow = asyncio.create_task(advisor.refresh())
    await slow_started.wait()
    assert await advisor.refresh()
    release_slow.set()

    assert not await slow
    assert advisor.snapshot.profile.name == "Fresh"
    await advisor.close()


@pytest.mark.asyncio
async def test_snapshot_updated_event() -> None:
    advisor = make(FakeGateway())
    seen: list[str] = []

    async def handler(event: Any) -> None:
        seen.append(event.type)

    advisor.on(ev.SNAPSHOT_UPDATED, handler)
    await advisor.refresh()

    assert seen == [ev.SNAPSHOT_UPDATED]
    await advisor.close()


# ============================================================
#  Send
# ============================================================


@pytest.mark.asyncio
async def test_blank_send_is_ignored() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)
    before = advisor.messages

    assert await advisor.send("   ") is None
    assert await advisor.send("") is None

    assert advisor.messages == before
    assert gateway.prompts == []
    await advisor.close()


@pytest.mark.asyncio
async def test_send_appends_user_and_reply() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)
    await advisor.refresh()

    reply = await advisor.send("  What first?  ")

    assert reply is not None
    assert reply.content == "Plan: review Algebra."
    roles = [m.role for m in advisor.messages]
    assert roles == ["assistant", "user", "assistant"]
    assert advisor.messages[1].content == "What first?"
    assert 'The student asks: "What first?"' in gateway.prompts[0]
    assert "Student: What first?" in gateway.prompts[0]
    assert not advisor.in_flight
    await advisor.close()


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback() -> None:
    gateway = FakeGateway()
    gateway.replies = [{"response": "  "}]
    advisor = make(gateway)

    reply = await advisor.send("hi")

    assert reply.content == FALLBACK_REPLY
    await advisor.close()


@pytest.mark.asyncio
async def test_concurrent_send_is_rejected() -> None:
    """Only one assistant call may be in flight."""
    started = asyncio.Event()
    release = asyncio.Event()
    prompts: list[str] = []

    async def send_prompt(text: str) -> str:
        prompts.append(text)
        started.set()
        await release.wait()
        return "done"

    advisor = AdvisoryOrchestrator(FakeGateway().fetch_state, send_prompt)
    first = asyncio.create_task(advisor.send("one"))
    await started.wait()

    assert advisor.in_flight
    assert await advisor.send("two") is None

    release.set()
    assert (await first).content == "done"
    assert len(prompts) == 1
    assert [m.content for m in advisor.messages[1:]] == ["one", "done"]
    await advisor.close()


@pytest.mark.asyncio
async def test_rate_limit_arms_cooldown() -> None:
    gateway = FakeGateway()
    gateway.replies = [RateLimitedError("Slow down", retry_after_seconds=12)]
    advisor = make(gateway, AdvisorConfig(cooldown_tick_seconds=60))
    armed: list[Any] = []
    advisor.on(ev.COOLDOWN_ARMED, armed.append)

    reply = await advisor.send("hi")

    assert advisor.cooldown_seconds == 12
    assert "Cooling down" in reply.content
    assert "Slow down" in reply.content
    assert armed[0].data == {"seconds": 12}
    assert not advisor.in_flight

    assert await advisor.send("again") is None
    assert len(gateway.prompts) == 1
    await advisor.close()


@pytest.mark.asyncio
async def test_rate_limit_default_duration() -> None:
    gateway = FakeGateway()
    gateway.replies = [RateLimitedError("busy")]
    advisor = make(gateway, AdvisorConfig(cooldown_tick_seconds=60))

    await advisor.send("hi")

    assert advisor.cooldown_seconds == 30
    await advisor.close()


@pytest.mark.asyncio
async def test_send_resumes_after_cooldown() -> None:
    gateway = FakeGateway()
    gateway.replies = [RateLimitedError("busy", retry_after_seconds=2), ChatReply(text="ok")]
    advisor = make(gateway, AdvisorConfig(cooldown_tick_seconds=60))

    await advisor.send("hi")
    advisor.cooldown.tick()
    advisor.cooldown.tick()

    assert (await advisor.send("again")).content == "ok"
    await advisor.close()


@pytest.mark.asyncio
async def test_other_failure_becomes_message() -> None:
    """TransientAssistantFailure is a conversation message, not an exception."""
    gateway = FakeGateway()
    gateway.replies = [RuntimeError("model overloaded"), ChatReply(text="ok")]
    advisor = make(gateway)

    reply = await advisor.send("hi")

    assert reply.content == "I hit a snag analysing the data: model overloaded"
    assert advisor.cooldown.can_send()
    assert (await advisor.send("retry")).content == "ok"
    await advisor.close()


@pytest.mark.asyncio
async def test_history_cap_holds_through_sends() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)
    await advisor.refresh()

    for i in range(15):
        await advisor.send(f"question {i}")

    assert len(advisor.messages) == 20
    assert advisor.messages[0].content == advisor.greeting
    await advisor.close()


@pytest.mark.asyncio
async def test_reset_drops_pending_reply() -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def send_prompt(text: str) -> str:
        started.set()
        await release.wait()
        return "late reply"

    advisor = AdvisoryOrchestrator(FakeGateway().fetch_state, send_prompt)
    pending = asyncio.create_task(advisor.send("one"))
    await started.wait()

    advisor.reset_conversation()
    release.set()

    assert await pending is None
    assert len(advisor.messages) == 1
    await advisor.close()


@pytest.mark.asyncio
async def test_greeting_tracks_snapshot_changes() -> None:
    gateway = FakeGateway()
    gateway.states = [DASHBOARD, {**DASHBOARD, "user": {"name": "Grace Hopper"}}]
    advisor = make(gateway)

    await advisor.refresh()
    await advisor.send("hi")
    await advisor.refresh()

    assert advisor.messages[0].content.startswith("Hey Grace!")
    assert len(advisor.messages) == 3
    await advisor.close()


# ============================================================
#  Actions and lifecycle
# ============================================================


@pytest.mark.asyncio
async def test_complete_quest_refreshes() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)

    assert await advisor.complete_quest(1)
    assert gateway.completed == [1]
    assert gateway.fetches == 1
    await advisor.close()


@pytest.mark.asyncio
async def test_vote_refreshes() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)

    await advisor.vote(4, 1)

    assert gateway.votes == [(4, 1)]
    assert gateway.fetches == 1
    await advisor.close()


@pytest.mark.asyncio
async def test_submit_post_then_refresh() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)
    await advisor.refresh()

    post = await advisor.submit_post({"title": "Graph coloring"})

    assert post.id == "new"
    assert post.is_mine
    assert gateway.fetches == 2
    await advisor.close()


@pytest.mark.asyncio
async def test_submit_post_shows_post_before_refresh_lands() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)
    await advisor.refresh()
    gateway.states = [RuntimeError("offline")]

    await advisor.submit_post({"title": "Graph coloring"})

    assert [p.id for p in advisor.feed("mine")] == ["new"]
    assert advisor.feed()[0].id == "new"
    await advisor.close()


@pytest.mark.asyncio
async def test_submit_post_uses_session_config() -> None:
    """The created post is normalized with the session's tag cap."""
    gateway = FakeGateway()

    async def create_post(payload: dict[str, Any]) -> dict[str, Any]:
        return {"id": "new", "title": payload["title"], "tags": ["a", "b", "c", "d", "e"]}

    advisor = AdvisoryOrchestrator(
        gateway.fetch_state,
        gateway.send_prompt,
        submit_post=create_post,
        config=AdvisorConfig(max_tags=2),
    )
    await advisor.refresh()

    post = await advisor.submit_post({"title": "Graph coloring"})

    assert post.tags == ["a", "b"]
    await advisor.close()


@pytest.mark.asyncio
async def test_missing_collaborator_raises() -> None:
    gateway = FakeGateway()
    advisor = AdvisoryOrchestrator(gateway.fetch_state, gateway.send_prompt)

    with pytest.raises(RuntimeError):
        await advisor.complete_quest(1)
    await advisor.close()


@pytest.mark.asyncio
async def test_close_cancels_cooldown_ticker() -> None:
    gateway = FakeGateway()
    gateway.replies = [RateLimitedError("busy", retry_after_seconds=30)]

    async with make(gateway) as advisor:
        await advisor.send("hi")
        assert advisor.cooldown.is_ticking

    assert not advisor.cooldown.is_ticking
    assert await advisor.send("after close") is None


@pytest.mark.asyncio
async def test_send_before_first_snapshot() -> None:
    gateway = FakeGateway()
    advisor = make(gateway)

    await advisor.send("hi")

    assert "No metrics available." in gateway.prompts[0]
    assert isinstance(advisor.snapshot, (StateSnapshot, type(None)))
    await advisor.close()
