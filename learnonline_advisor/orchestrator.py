"""
AdvisoryOrchestrator: one learner's advisory session.

Owns the latest :class:`StateSnapshot` and everything derived from it,
the conversation, and the cooldown. Collaborators are plain async
callables, so any transport can back them::

    async with LearnOnlineClient(config) as client:
        async with AdvisoryOrchestrator.from_client(client) as advisor:
            await advisor.refresh()
            await advisor.send("How should I prepare for Friday's quiz?")
            print(advisor.messages[-1].content)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from learnonline_advisor import feed as feed_ops
from learnonline_advisor import events as ev
from learnonline_advisor.client import LearnOnlineClient, RateLimitedError
from learnonline_advisor.conversation import (
    WELCOME_TEXT,
    ConversationSession,
    CooldownController,
)
from learnonline_advisor.events import EventHandler, EventManager
from learnonline_advisor.insights import (
    actionable,
    compose_greeting,
    derive,
    suggest_prompts,
)
from learnonline_advisor.prompts import compose
from learnonline_advisor.types import (
    AdvisorConfig,
    ChatReply,
    ConversationMessage,
    FeedPost,
    Insight,
    Notification,
    StateSnapshot,
)

logger = logging.getLogger(__name__)

# Collaborator signatures
FetchStateFn = Callable[[], Awaitable[StateSnapshot | dict[str, Any]]]
SendPromptFn = Callable[[str], Awaitable[ChatReply | dict[str, Any] | str | None]]
SubmitCompletionFn = Callable[[Any], Awaitable[Any]]
SubmitVoteFn = Callable[[Any, int], Awaitable[Any]]
SubmitPostFn = Callable[[dict[str, Any]], Awaitable[FeedPost | dict[str, Any]]]

FALLBACK_REPLY = (
    "Here's a quick nudge: reflect on what you've covered and let me know what "
    "still feels unclear."
)
OFFLINE_DETAIL = "I'm offline right now. Please try again in a moment."


def reply_text(reply: ChatReply | dict[str, Any] | str | None) -> str:
    """Extract the reply text, falling back to a nudge when there is none."""
    if isinstance(reply, str):
        text: Any = reply
    elif isinstance(reply, ChatReply):
        text = reply.text
    elif isinstance(reply, dict):
        text = reply.get("text") or reply.get("response") or reply.get("message")
    else:
        text = None
    if not isinstance(text, str) or not text.strip():
        return FALLBACK_REPLY
    return text.strip()


def _error_detail(exc: BaseException) -> str:
    detail = getattr(exc, "detail", None) or str(exc)
    return detail or OFFLINE_DETAIL


class AdvisoryOrchestrator:
    """
    Advisory session for one learner.

    Every accepted snapshot replaces the previous one wholesale and all
    derived lists are rebuilt from it. At most one assistant call is in
    flight; responses to superseded requests are dropped.
    """

    def __init__(
        self,
        fetch_state: FetchStateFn,
        send_prompt: SendPromptFn,
        *,
        submit_completion: SubmitCompletionFn | None = None,
        submit_vote: SubmitVoteFn | None = None,
        submit_post: SubmitPostFn | None = None,
        config: AdvisorConfig | None = None,
    ) -> None:
        self.config = config or AdvisorConfig()
        self._fetch_state = fetch_state
        self._send_prompt = send_prompt
        self._submit_completion = submit_completion
        self._submit_vote = submit_vote
        self._submit_post = submit_post

        self._events = EventManager()
        self.session = ConversationSession(max_messages=self.config.max_history)
        self.cooldown = CooldownController(interval=self.config.cooldown_tick_seconds)

        # State
        self._snapshot: StateSnapshot | None = None
        self._notifications: list[Notification] = []
        self._insights: list[Insight] = []
        self._feed: list[FeedPost] = []
        self._quick_prompts: list[str] = []
        self._greeting: str | None = None
        self._load_error: str | None = None
        self._refresh_seq = 0
        self._send_seq = 0
        self._in_flight = False
        self._closed = False

    @classmethod
    def from_client(
        cls, client: LearnOnlineClient, config: AdvisorConfig | None = None
    ) -> AdvisoryOrchestrator:
        """Wire every collaborator to a :class:`LearnOnlineClient`."""
        return cls(
            client.dashboard.fetch_state,
            client.assistant.send_prompt,
            submit_completion=client.quests.complete,
            submit_vote=client.polls.vote,
            submit_post=client.research.create_post,
            config=config,
        )

    # ---- Read-only state ----

    @property
    def snapshot(self) -> StateSnapshot | None:
        return self._snapshot

    @property
    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def actionable_notifications(self) -> list[Notification]:
        return actionable(self._notifications)

    @property
    def insights(self) -> list[Insight]:
        return list(self._insights)

    @property
    def quick_prompts(self) -> list[str]:
        return list(self._quick_prompts)

    @property
    def greeting(self) -> str | None:
        return self._greeting

    @property
    def messages(self) -> list[ConversationMessage]:
        return self.session.messages

    @property
    def load_error(self) -> str | None:
        """User-visible message for the last failed refresh, if any."""
        return self._load_error

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def cooldown_seconds(self) -> int:
        return self.cooldown.remaining_seconds

    def feed(self, filter_mode: str = "all", sort_mode: str = "recent") -> list[FeedPost]:
        """The normalized feed, filtered then sorted."""
        posts = feed_ops.filter_posts(self._feed, filter_mode, self.config)
        return feed_ops.sort_posts(posts, sort_mode)

    # ---- Event shortcuts ----

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific event type."""
        self._events.subscribe(event_type, handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Unsubscribe from an event type."""
        self._events.unsubscribe(event_type, handler)

    # ---- Snapshot ----

    def apply_snapshot(self, snapshot: StateSnapshot) -> None:
        """Replace the snapshot and rebuild every derived list from it."""
        derived = derive(snapshot, self.config)
        self._snapshot = snapshot
        self._notifications = derived.notifications
        self._insights = derived.insights
        self._feed = feed_ops.normalize(snapshot.raw_feed, self.config)
        self._quick_prompts = suggest_prompts(snapshot, derived.insights, self.config)
        self._greeting = compose_greeting(snapshot, derived.insights)
        self._load_error = None
        self.session.sync_greeting(self._greeting)

    async def refresh(self) -> bool:
        """Fetch a fresh snapshot and recompute.

        Returns True when the snapshot was applied. On failure the previous
        snapshot and derived lists are kept and :attr:`load_error` is set.
        A response that arrives after a newer refresh was issued is dropped.
        """
        self._refresh_seq += 1
        seq = self._refresh_seq
        try:
            data = await self._fetch_state()
            snapshot = data if isinstance(data, StateSnapshot) else StateSnapshot.model_validate(data)
        except Exception as e:
            if seq != self._refresh_seq or self._closed:
                logger.debug("Dropping failure from superseded refresh #%d", seq)
                return False
            logger.warning("Dashboard refresh failed: %s", e)
            self._load_error = f"Unable to load dashboard: {e}" if str(e) else "Unable to load dashboard"
            await self._events.emit(ev.SNAPSHOT_FAILED, error=self._load_error)
            return False

        if seq != self._refresh_seq or self._closed:
            logger.debug("Dropping superseded refresh #%d (latest #%d)", seq, self._refresh_seq)
            return False

        self.apply_snapshot(snapshot)
        logger.info(
            "Applied snapshot: %d notifications, %d insights, %d feed posts",
            len(self._notifications),
            len(self._insights),
            len(self._feed),
        )
        await self._events.emit(
            ev.SNAPSHOT_UPDATED,
            notifications=len(self._notifications),
            insights=len(self._insights),
        )
        return True

    # ---- Conversation ----

    async def send(self, question: str) -> ConversationMessage | None:
        """Ask the coach a question.

        Blank questions, sends while a reply is pending, and sends during a
        cooldown are ignored and return None. Otherwise the reply (or an
        explanatory assistant message on failure) is appended and returned;
        None is also returned if the session was reset before it arrived.
        """
        trimmed = (question or "").strip()
        if not trimmed or self._in_flight or self._closed or not self.cooldown.can_send():
            logger.debug("Send rejected (blank, in flight, closed or cooling down)")
            return None

        # Flag first so event handlers cannot start a second call.
        self._in_flight = True
        self._send_seq += 1
        seq = self._send_seq
        self.session.add("user", trimmed)
        try:
            await self._events.emit(ev.CONVERSATION_UPDATED, role="user")
            prompt = compose(
                self._snapshot or StateSnapshot(), self.session.messages, trimmed, self.config
            )
            reply = await self._send_prompt(prompt)
            content = reply_text(reply)
        except RateLimitedError as e:
            seconds = e.retry_after_seconds or self.config.default_cooldown_seconds
            if seq == self._send_seq:
                self.cooldown.arm(seconds)
                await self._events.emit(ev.COOLDOWN_ARMED, seconds=seconds)
            content = (
                f"We hit a short rate limit. Cooling down for {seconds}s before trying "
                f"again. {_error_detail(e)}"
            )
        except Exception as e:
            logger.warning("Assistant call failed: %s", e)
            content = f"I hit a snag analysing the data: {_error_detail(e)}"
        finally:
            self._in_flight = False

        if seq != self._send_seq:
            logger.debug("Dropping reply to superseded send #%d", seq)
            return None

        message = self.session.add("assistant", content)
        await self._events.emit(ev.CONVERSATION_UPDATED, role="assistant")
        return message

    def reset_conversation(self) -> None:
        """Start a fresh conversation.

        A pending reply is dropped on arrival; new sends stay blocked until
        that call returns.
        """
        self._send_seq += 1
        self.session = ConversationSession(
            greeting=self._greeting or WELCOME_TEXT,
            max_messages=self.config.max_history,
        )

    # ---- Fire-and-refresh actions ----

    async def complete_quest(self, quest_id: Any) -> bool:
        """Mark a quest complete, then refresh."""
        if self._submit_completion is None:
            raise RuntimeError("No quest completion collaborator configured")
        await self._submit_completion(quest_id)
        return await self.refresh()

    async def vote(self, poll_id: Any, option_index: int) -> bool:
        """Vote in a poll, then refresh."""
        if self._submit_vote is None:
            raise RuntimeError("No poll vote collaborator configured")
        await self._submit_vote(poll_id, option_index)
        return await self.refresh()

    async def submit_post(self, payload: dict[str, Any]) -> FeedPost:
        """Publish a research post, show it at the head of the feed, then refresh."""
        if self._submit_post is None:
            raise RuntimeError("No research post collaborator configured")
        created = await self._submit_post(payload)
        post = created if isinstance(created, FeedPost) else feed_ops.normalize_post(created, 0, self.config)

        if self._snapshot is not None:
            record = post.model_dump(by_alias=True)
            raw_feed = [record, *(self._snapshot.raw_feed or [])]
            self.apply_snapshot(self._snapshot.model_copy(update={"raw_feed": raw_feed}))

        await self.refresh()
        return post

    # ---- Lifecycle ----

    async def close(self) -> None:
        """Stop the cooldown ticker and drop any pending responses."""
        if self._closed:
            return
        self._closed = True
        self._refresh_seq += 1
        self._send_seq += 1
        await self.cooldown.close()
        self._events.clear()
        logger.info("Advisory session closed")

    async def __aenter__(self) -> AdvisoryOrchestrator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
