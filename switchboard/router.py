"""Ordered, first-match-wins rule table.

Routes are evaluated in registration order; the first route that fully
matches decides the handler. Builder calls on the Router create a new
Route (snapshotting the router's current self-talk default, bot id and
build error) and return it for chaining:

    router = Router()
    router.hear(r"^ping$").message_handler(pong)
    router.messages(MessageType.DIRECT_MENTION).message_handler(greet)
    if router.err:
        raise router.err

Key classes:
    Router: Ordered collection of Routes; also used as a subrouter.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple, Union

import structlog

from .context import MatchContext
from .events import MessageType
from .exceptions import BuildError
from .matchers import Matcher
from .route import Handler, MessageHandler, Route, RouteMatch

logger = structlog.get_logger("switchboard.router")


class Router:
    """Ordered list of Routes, matched first-match-wins.

    Args:
        parent: Route that owns this router when it is a subrouter.
        err: Build error inherited from the owning chain.
        bot_id: Bot account id, if already known.
    """

    def __init__(
        self,
        parent: Optional[Route] = None,
        *,
        err: Optional[BuildError] = None,
        bot_id: str = "",
    ):
        # Routes to be matched, in order.
        self.routes: List[Route] = []
        self.parent = parent
        self.bot_id = bot_id
        # First error from the chain that built this router; disables matching.
        self._err = err
        # Default self-talk flag for routes created from now on.
        self._talk_to_self = False

    @property
    def err(self) -> Optional[BuildError]:
        """The sticky build error, or None."""
        return self._err

    def match(
        self, ctx: MatchContext, route_match: RouteMatch
    ) -> Tuple[bool, MatchContext]:
        """Match registered routes against ``ctx`` in order.

        Returns (True, ctx') for the first matching route, where ctx' is
        the context that route produced. Returns (False, ctx) unchanged
        otherwise.
        """
        if self._err is not None:
            return False, ctx

        for index, route in enumerate(self.routes):
            matched, route_ctx = route.match(ctx, route_match)
            if matched:
                logger.debug("route_matched", index=index, nested=self.parent is not None)
                return True, route_ctx

        return False, ctx

    def set_bot_id(self, bot_id: str) -> None:
        """Store the bot account id and push it to every route."""
        self.bot_id = bot_id
        for route in self.routes:
            route.set_bot_id(bot_id)

    def _fail(self, err: BuildError) -> None:
        if self._err is None:
            self._err = err
        if self.parent is not None:
            self.parent._fail(err)

    # -- builders --------------------------------------------------------

    def new_route(self, talk_to_self: Optional[bool] = None) -> Route:
        """Register an empty route.

        Args:
            talk_to_self: Force the route's self-talk flag; None uses
                the router's current default.
        """
        if talk_to_self is None:
            talk_to_self = self._talk_to_self
        route = Route(
            self, err=self._err, talk_to_self=talk_to_self, bot_id=self.bot_id
        )
        self.routes.append(route)
        return route

    def hear(self, pattern: str, flags: int = 0) -> Route:
        return self.new_route().hear(pattern, flags)

    def messages(self, *types: MessageType) -> Route:
        return self.new_route().messages(*types)

    def add_matcher(
        self, matcher: Union[Matcher, Callable[[MatchContext], bool]]
    ) -> Route:
        return self.new_route().add_matcher(matcher)

    def handler(self, handler: Handler) -> Optional[BuildError]:
        return self.new_route().handler(handler)

    def message_handler(self, handler: MessageHandler) -> Optional[BuildError]:
        return self.new_route().message_handler(handler)

    def talk_to_self(self) -> Route:
        return self.new_route(True)

    def no_talk_to_self(self) -> Route:
        return self.new_route(False)

    def always_talk_to_self(self) -> "Router":
        """Let routes created after this call match the bot's own messages."""
        self._talk_to_self = True
        return self

    def never_talk_to_self(self) -> "Router":
        """Stop routes created after this call from matching the bot's own messages."""
        self._talk_to_self = False
        return self
