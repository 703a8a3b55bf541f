"""
LearnOnline gateway client.

Async HTTP client for the endpoints the advisory engine depends on:
the student dashboard snapshot, the AI chat endpoint, and the
fire-and-refresh actions (quest completion, poll votes, research posts).

Usage::

    from learnonline_advisor import LearnOnlineClient, ClientConfig

    async with LearnOnlineClient(ClientConfig(token="...")) as client:
        snapshot = await client.dashboard.fetch_state()
        reply = await client.assistant.send_prompt("Plan my week")
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from learnonline_advisor.feed import normalize_post
from learnonline_advisor.types import ChatReply, ClientConfig, FeedPost, StateSnapshot

logger = logging.getLogger(__name__)


class RateLimitedError(RuntimeError):
    """The gateway answered 429.

    Attributes:
        retry_after_seconds: Seconds to wait, when the gateway said.
        detail: The gateway's error message.
    """

    def __init__(self, detail: str, retry_after_seconds: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.retry_after_seconds = retry_after_seconds


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _retry_after(response: httpx.Response, payload: dict[str, Any]) -> int | None:
    for value in (payload.get("retryAfterSeconds"), response.headers.get("retry-after")):
        try:
            seconds = int(float(value))
        except (TypeError, ValueError):
            continue
        if seconds > 0:
            return seconds
    return None


class _HttpClient:
    """Thin wrapper around httpx for gateway requests."""

    def __init__(self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = config.base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request to the gateway.

        Rate-limited responses are never retried here; they raise
        :class:`RateLimitedError` so the caller can cool down.
        """
        response = await self._client.request(method=method, url=path, json=body)

        if response.status_code == 429:
            payload = _error_payload(response)
            detail = payload.get("error") or payload.get("message") or "Too many requests"
            retry_after = _retry_after(response, payload)
            logger.info("Rate limited (429) on %s %s, retry after %s", method, path, retry_after)
            raise RateLimitedError(str(detail), retry_after)

        # Only the JSON error field goes into the exception, never the raw body.
        if response.status_code >= 400:
            payload = _error_payload(response)
            err_msg = payload.get("error") or payload.get("message") or "Request failed"
            raise httpx.HTTPStatusError(
                f"Gateway request failed ({response.status_code}): {err_msg}",
                request=response.request,
                response=response,
            )

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


# ============================================================
#  Sub-managers
# ============================================================


class _DashboardManager:
    """Student dashboard state."""

    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def fetch_state(self, params: dict[str, Any] | None = None) -> StateSnapshot:
        """Fetch one full snapshot of the learner's state.

        Raises:
            httpx.HTTPStatusError: The gateway refused the request.
            pydantic.ValidationError: The payload is not a usable snapshot.
        """
        path = "/student/dashboard"
        if params:
            path += "?" + str(httpx.QueryParams(params))
        data = await self._http.request("GET", path)
        return StateSnapshot.model_validate(data)


class _AssistantManager:
    """AI chat endpoint."""

    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def send_prompt(self, text: str) -> ChatReply:
        """Send a composed prompt and return the assistant's reply.

        Raises:
            RateLimitedError: The assistant is throttling this learner.
        """
        data = await self._http.request("POST", "/ai/chat", {"message": text})
        if isinstance(data, str):
            return ChatReply(text=data)
        return ChatReply.model_validate(data if isinstance(data, dict) else {})


class _QuestManager:
    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def complete(self, quest_id: int | str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._http.request(
            "POST", f"/quests/{url_quote(str(quest_id), safe='')}/complete", payload or {}
        )


class _PollManager:
    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def vote(self, poll_id: int | str, option_index: int) -> dict[str, Any]:
        return await self._http.request(
            "POST",
            f"/polls/{url_quote(str(poll_id), safe='')}/vote",
            {"option_index": option_index},
        )


class _ResearchManager:
    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def create_post(self, payload: dict[str, Any]) -> FeedPost:
        """Publish a research post and return it in canonical feed shape."""
        data = await self._http.request("POST", "/research/posts", payload)
        return normalize_post(data, 0)


class LearnOnlineClient:
    """
    Client for the LearnOnline gateway.

    Groups the endpoints into sub-managers: ``dashboard``, ``assistant``,
    ``quests``, ``polls`` and ``research``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._http = _HttpClient(self.config, transport=transport)

        self.dashboard = _DashboardManager(self._http)
        self.assistant = _AssistantManager(self._http)
        self.quests = _QuestManager(self._http)
        self.polls = _PollManager(self._http)
        self.research = _ResearchManager(self._http)

    async def close(self) -> None:
        await self._http.close()
        logger.debug("Closed LearnOnline client for %s", self._http.base_url)

    async def __aenter__(self) -> LearnOnlineClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
