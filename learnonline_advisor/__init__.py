"""
LearnOnline adaptive advisory & feed engine.

Derives notifications and coaching insights from a learner's dashboard
state, runs a capped AI-coach conversation with rate-limit cooldowns, and
normalizes the research feed.

Example::

    from learnonline_advisor import AdvisoryOrchestrator, ClientConfig, LearnOnlineClient

    async with LearnOnlineClient(ClientConfig.from_env()) as client:
        async with AdvisoryOrchestrator.from_client(client) as advisor:
            await advisor.refresh()
            for insight in advisor.insights:
                print(insight.title)

            await advisor.send("What should I study tonight?")
            print(advisor.messages[-1].content)

            trending = advisor.feed("trending", "popular")
"""

from learnonline_advisor.client import LearnOnlineClient, RateLimitedError
from learnonline_advisor.content_safety import sanitize_for_prompt
from learnonline_advisor.conversation import ConversationSession, CooldownController
from learnonline_advisor.feed import filter_posts, normalize, popularity_score, sort_posts
from learnonline_advisor.insights import (
    NO_UPDATES_ID,
    compose_greeting,
    derive,
    derive_insights,
    derive_notifications,
    suggest_prompts,
)
from learnonline_advisor.orchestrator import AdvisoryOrchestrator
from learnonline_advisor.prompts import compose
from learnonline_advisor.types import (
    AdvisorConfig,
    AdvisorEvent,
    ChatReply,
    ClientConfig,
    ConversationMessage,
    Course,
    Derivation,
    FeedPost,
    FeedStats,
    Insight,
    Metrics,
    Notification,
    Profile,
    Quest,
    StateSnapshot,
)

__all__ = [
    "AdvisoryOrchestrator",
    "LearnOnlineClient",
    "RateLimitedError",
    "ConversationSession",
    "CooldownController",
    "AdvisorConfig",
    "ClientConfig",
    "StateSnapshot",
    "Profile",
    "Metrics",
    "Quest",
    "Course",
    "Notification",
    "Insight",
    "Derivation",
    "FeedPost",
    "FeedStats",
    "ConversationMessage",
    "ChatReply",
    "AdvisorEvent",
    "NO_UPDATES_ID",
    "derive",
    "derive_notifications",
    "derive_insights",
    "compose_greeting",
    "suggest_prompts",
    "normalize",
    "filter_posts",
    "sort_posts",
    "popularity_score",
    "compose",
    "sanitize_for_prompt",
]

__version__ = "0.1.0"
