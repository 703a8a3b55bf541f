"""
Advisor conversation state: the capped message history and the
rate-limit cooldown.
"""

from __future__ import annotations

import asyncio
import itertools
import logging

from learnonline_advisor.types import ConversationMessage

logger = logging.getLogger(__name__)

GREETING_ID = "assistant-welcome"
WELCOME_TEXT = (
    "Hi! I'm your AI learning coach. Once your dashboard loads, I'll summarize "
    "your progress and help plan your next steps."
)


class ConversationSession:
    """Capped message history with a greeting pinned at index 0.

    The greeting is replaced in place when its text changes and is never
    evicted by the cap; other messages are dropped oldest first.
    """

    def __init__(self, greeting: str = WELCOME_TEXT, max_messages: int = 20) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._max = max_messages
        self._ids = itertools.count(1)
        self._messages: list[ConversationMessage] = [
            ConversationMessage(id=GREETING_ID, role="assistant", content=greeting)
        ]

    @property
    def messages(self) -> list[ConversationMessage]:
        """A copy of the current history."""
        return list(self._messages)

    @property
    def greeting(self) -> ConversationMessage | None:
        if self._messages and self._messages[0].role == "assistant":
            return self._messages[0]
        return None

    def __len__(self) -> int:
        return len(self._messages)

    def sync_greeting(self, text: str) -> None:
        """Keep the greeting at index 0 in step with ``text``."""
        head = self.greeting
        if head is None:
            self._messages.insert(
                0, ConversationMessage(id=GREETING_ID, role="assistant", content=text)
            )
            self._enforce_cap()
        elif head.content != text:
            self._messages[0] = head.model_copy(update={"content": text})

    def append(self, message: ConversationMessage) -> ConversationMessage:
        """Append a message, evicting from index 1 while over the cap."""
        self._messages.append(message)
        self._enforce_cap()
        return message

    def add(self, role: str, content: str) -> ConversationMessage:
        """Create a message with a session-unique id and append it."""
        message = ConversationMessage(id=f"{role}-{next(self._ids)}", role=role, content=content)
        return self.append(message)

    def recent(self, count: int) -> list[ConversationMessage]:
        if count <= 0:
            return []
        return self._messages[-count:]

    def _enforce_cap(self) -> None:
        while len(self._messages) > self._max and len(self._messages) > 1:
            del self._messages[1]


class CooldownController:
    """Gate on new assistant requests after a rate-limit response.

    ``arm`` starts (or extends) the cooldown. While cooling, a background
    task calls :meth:`tick` once per ``interval`` seconds and exits when the
    count reaches zero. :meth:`close` cancels a pending ticker.

    Armed outside an event loop, no ticker can start yet. The first
    :meth:`can_send` made inside a running loop starts it; until then the
    owner may drive :meth:`tick` itself.
    """

    def __init__(self, interval: float = 1.0) -> None:
        self._interval = interval
        self._remaining = 0
        self._ticker: asyncio.Task[None] | None = None

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def is_ticking(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def can_send(self) -> bool:
        if self._remaining > 0:
            self._start_ticker()
        return self._remaining == 0

    def arm(self, seconds: int) -> None:
        """Enter (or extend) the cooling state for ``seconds``."""
        seconds = int(seconds)
        if seconds <= 0:
            return
        self._remaining = max(self._remaining, seconds)
        logger.info("Assistant cooldown armed for %ds", self._remaining)
        self._start_ticker()

    def tick(self) -> None:
        """Count down one second."""
        if self._remaining > 0:
            self._remaining -= 1
            if self._remaining == 0:
                logger.debug("Assistant cooldown cleared")

    async def close(self) -> None:
        """Cancel the ticker. The remaining count is left as is."""
        if self._ticker and not self._ticker.done():
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
        self._ticker = None

    def _start_ticker(self) -> None:
        if self.is_ticking:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: started by the next can_send() inside one.
            return
        self._ticker = loop.create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        try:
            while self._remaining > 0:
                await asyncio.sleep(self._interval)
                self.tick()
        except asyncio.CancelledError:
            pass
