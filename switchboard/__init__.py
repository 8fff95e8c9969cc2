"""switchboard: first-match-wins message routing for Signal bots.

Rules are registered on a Router (or a Bot, which is a Router bound to
the Signal transport) and evaluated in order for every inbound message:

    bot = Bot()
    bot.hear(r"(?i)^ping$").message_handler(pong)
    bot.messages(MessageType.DIRECT_MENTION).message_handler(greet)
"""

__version__ = "0.3.0"

from .context import (
    MatchContext,
    add_bot_to_context,
    add_event_to_context,
    bot_from_context,
    event_from_context,
)
from .events import (
    Mention,
    MessageEvent,
    MessageType,
    is_direct_mention,
    is_direct_message,
    strip_direct_mention,
)
from .exceptions import (
    AuthenticationError,
    BuildError,
    ConfigurationError,
    SwitchboardError,
    TransportError,
)
from .matchers import FunctionMatcher, Matcher, RegexpMatcher, TypesMatcher
from .route import Route, RouteMatch
from .router import Router
from .bot import Bot

__all__ = [
    # Routing
    "Router",
    "Route",
    "RouteMatch",
    "Matcher",
    "RegexpMatcher",
    "TypesMatcher",
    "FunctionMatcher",
    # Context
    "MatchContext",
    "bot_from_context",
    "add_bot_to_context",
    "event_from_context",
    "add_event_to_context",
    # Events
    "MessageEvent",
    "MessageType",
    "Mention",
    "is_direct_message",
    "is_direct_mention",
    "strip_direct_mention",
    # Transport
    "Bot",
    # Errors
    "SwitchboardError",
    "BuildError",
    "AuthenticationError",
    "TransportError",
    "ConfigurationError",
]
