"""Matchers: the predicates a Route AND-combines.

A matcher inspects a MatchContext and reports whether it matches,
optionally returning a derived context. Every matcher also accepts
the bot's account id, which may arrive after the matcher was built
(the id is only known once the transport has authenticated).

Key classes:
    Matcher: ABC every matcher implements.
    RegexpMatcher: Regular expression against mention-stripped text.
    TypesMatcher: Direct message / direct mention classification (OR).
    FunctionMatcher: Adapts a plain predicate callable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Pattern, Tuple

from .context import MatchContext, event_from_context
from .events import (
    MessageType,
    is_direct_mention,
    is_direct_message,
    strip_direct_mention,
)


class Matcher(ABC):
    """Base class for route matchers."""

    bot_id: str = ""

    @abstractmethod
    def match(self, ctx: MatchContext) -> Tuple[bool, MatchContext]:
        """Return (matched, context) for ``ctx``."""
        ...

    def set_bot_id(self, bot_id: str) -> None:
        self.bot_id = bot_id


class RegexpMatcher(Matcher):
    """Search the event text, minus any leading @mention, with a regex.

    The bot id is accepted for interface uniformity but unused.
    """

    def __init__(self, regex: Pattern[str], bot_id: str = ""):
        self.regex = regex
        self.bot_id = bot_id

    def match(self, ctx: MatchContext) -> Tuple[bool, MatchContext]:
        event = event_from_context(ctx)
        if event is None:
            return False, ctx
        # Same rule should fire whether or not the bot was addressed
        text = strip_direct_mention(event.text)
        return self.regex.search(text) is not None, ctx

    def __repr__(self) -> str:
        return f"RegexpMatcher({self.regex.pattern!r})"


class TypesMatcher(Matcher):
    """Match events classified as ANY of the requested message types."""

    def __init__(self, types: Iterable[MessageType], bot_id: str = ""):
        self.types = tuple(MessageType(t) for t in types)
        self.bot_id = bot_id

    def match(self, ctx: MatchContext) -> Tuple[bool, MatchContext]:
        event = event_from_context(ctx)
        for t in self.types:
            if t is MessageType.DIRECT_MESSAGE and is_direct_message(event):
                return True, ctx
            if t is MessageType.DIRECT_MENTION and is_direct_mention(event, self.bot_id):
                return True, ctx
        return False, ctx

    def __repr__(self) -> str:
        return f"TypesMatcher({[t.value for t in self.types]!r})"


class FunctionMatcher(Matcher):
    """Adapt a ``predicate(ctx) -> bool`` callable into a Matcher."""

    def __init__(self, predicate: Callable[[MatchContext], bool]):
        self.predicate = predicate

    def match(self, ctx: MatchContext) -> Tuple[bool, MatchContext]:
        return bool(self.predicate(ctx)), ctx

    def __repr__(self) -> str:
        name = getattr(self.predicate, "__name__", type(self.predicate).__name__)
        return f"FunctionMatcher({name})"
