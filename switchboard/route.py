"""A single routing rule.

A Route AND-combines its matchers, optionally filters out the bot's own
messages, optionally rewrites the context first, and either names the
handler to run or hands the final decision to a nested subrouter.

Builder methods return the Route so rules read as one chain:

    router.hear(r"(?i)^ping$").message_handler(pong)

A construction failure (an invalid pattern) is stored, not raised. It
disables this route and every router/route that encloses it; callers
check ``err`` on the top-level router after registering their rules.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    List,
    Optional,
    Tuple,
    Union,
)

import structlog

from .context import MatchContext, bot_from_context, event_from_context
from .events import MessageType
from .exceptions import BuildError
from .matchers import FunctionMatcher, Matcher, RegexpMatcher, TypesMatcher

if TYPE_CHECKING:
    from .bot import Bot
    from .events import MessageEvent
    from .router import Router

logger = structlog.get_logger("switchboard.router")

# Handler signature: async (ctx) -> None
Handler = Callable[[MatchContext], Awaitable[None]]
# MessageHandler signature: async (ctx, bot, event) -> None
MessageHandler = Callable[
    [MatchContext, Optional["Bot"], Optional["MessageEvent"]], Awaitable[None]
]
Preprocessor = Callable[[MatchContext], MatchContext]


@dataclass
class RouteMatch:
    """Result slot filled by Router.match / Route.match.

    Attributes:
        route: The route whose handler was selected.
        handler: The handler to invoke.
    """
    route: Optional["Route"] = None
    handler: Optional[Handler] = None


class Route:
    """One routing rule. Create through Router builders, not directly."""

    def __init__(
        self,
        router: Optional["Router"] = None,
        *,
        err: Optional[BuildError] = None,
        talk_to_self: bool = False,
        bot_id: str = "",
    ):
        self.router = router
        self.err = err
        self.matchers: List[Matcher] = []
        self._handler: Optional[Handler] = None
        self._subrouter: Optional["Router"] = None
        self.preprocessor: Optional[Preprocessor] = None
        self.bot_id = bot_id
        self._talk_to_self = talk_to_self

    def __repr__(self) -> str:
        return (
            f"Route(matchers={self.matchers!r}, talk_to_self={self._talk_to_self}, "
            f"subrouter={self._subrouter is not None}, err={self.err!r})"
        )

    # -- matching --------------------------------------------------------

    def match(
        self, ctx: MatchContext, route_match: RouteMatch
    ) -> Tuple[bool, MatchContext]:
        """Evaluate this route against ``ctx``.

        Order: build error, missing handler, self-talk filter,
        preprocessor, matchers (AND), then subrouter delegation.
        """
        if self.err is not None:
            return False, ctx

        if self._handler is None and self._subrouter is None:
            return False, ctx

        event = event_from_context(ctx)
        if (
            event is not None
            and not self._talk_to_self
            and self.bot_id
            and event.user == self.bot_id
        ):
            return False, ctx

        if self.preprocessor is not None:
            ctx = self.preprocessor(ctx)

        for m in self.matchers:
            matched, ctx = m.match(ctx)
            if not matched:
                return False, ctx

        if self._subrouter is not None:
            return self._subrouter.match(ctx, route_match)

        route_match.route = self
        route_match.handler = self._handler
        return True, ctx

    def set_bot_id(self, bot_id: str) -> None:
        self.bot_id = bot_id
        for m in self.matchers:
            m.set_bot_id(bot_id)
        if self._subrouter is not None:
            self._subrouter.set_bot_id(bot_id)

    def _fail(self, err: BuildError) -> None:
        """Record the first build error here and up the owning chain."""
        if self.err is None:
            self.err = err
        if self.router is not None:
            self.router._fail(err)

    # -- builders --------------------------------------------------------

    def hear(self, pattern: str, flags: int = 0) -> "Route":
        """Require the (mention-stripped) text to match ``pattern``."""
        if self.err is not None:
            return self
        try:
            regex = re.compile(pattern, flags)
        except re.error as e:
            err = BuildError(f"invalid pattern: {e}", pattern=pattern)
            err.__cause__ = e
            logger.error("route_build_error", pattern=pattern, error=str(e))
            self._fail(err)
            return self
        self.matchers.append(RegexpMatcher(regex, bot_id=self.bot_id))
        return self

    def messages(self, *types: MessageType) -> "Route":
        """Require the event to be ANY of ``types``."""
        if self.err is not None:
            return self
        self.matchers.append(TypesMatcher(types, bot_id=self.bot_id))
        return self

    def add_matcher(
        self, matcher: Union[Matcher, Callable[[MatchContext], bool]]
    ) -> "Route":
        """Append a custom matcher (or a plain ``predicate(ctx) -> bool``)."""
        if self.err is not None:
            return self
        if not isinstance(matcher, Matcher):
            matcher = FunctionMatcher(matcher)
        if self.bot_id:
            matcher.set_bot_id(self.bot_id)
        self.matchers.append(matcher)
        return self

    def handler(self, handler: Handler) -> Optional[BuildError]:
        """Set the handler. Returns the sticky build error, if any."""
        if self.err is not None:
            return self.err
        self._handler = handler
        return None

    def message_handler(self, fn: MessageHandler) -> Optional[BuildError]:
        """Set a handler that receives the bot and event alongside ``ctx``."""
        async def handler(ctx: MatchContext) -> None:
            await fn(ctx, bot_from_context(ctx), event_from_context(ctx))

        handler.__name__ = getattr(fn, "__name__", "message_handler")
        return self.handler(handler)

    def preprocess(self, fn: Preprocessor) -> "Route":
        if self.err is not None:
            return self
        self.preprocessor = fn
        return self

    def talk_to_self(self) -> "Route":
        if self.err is not None:
            return self
        self._talk_to_self = True
        return self

    def no_talk_to_self(self) -> "Route":
        if self.err is not None:
            return self
        self._talk_to_self = False
        return self

    def subrouter(self) -> "Router":
        """Attach a fresh Router that makes the final match decision.

        This route's own matchers become a gate in front of it. The
        subrouter inherits the build error and bot id, not self-talk.
        """
        from .router import Router

        sub = Router(parent=self, err=self.err, bot_id=self.bot_id)
        if self.err is None:
            self._subrouter = sub
        return sub
