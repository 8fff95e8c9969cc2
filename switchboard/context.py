"""Per-event match context.

MatchContext carries the ambient state of one dispatch (the bot and
the inbound event) through preprocessors, matchers and handlers. It is
immutable: every "add" returns a new context, so a route that fails to
match can never leak its changes to the next route.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from .bot import Bot
    from .events import MessageEvent


def _empty_values() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class MatchContext:
    """Typed request context for one inbound event.

    Attributes:
        bot: The bot that received the event, if any.
        event: The inbound message being matched, if any.
        values: Read-only data derived by preprocessors and matchers.
    """

    bot: Optional["Bot"] = None
    event: Optional["MessageEvent"] = None
    values: Mapping[str, Any] = field(default_factory=_empty_values, repr=False)

    def with_bot(self, bot: Optional["Bot"]) -> "MatchContext":
        return replace(self, bot=bot)

    def with_event(self, event: Optional["MessageEvent"]) -> "MatchContext":
        return replace(self, event=event)

    def with_values(self, **values: Any) -> "MatchContext":
        """Return a copy with ``values`` merged over the existing ones."""
        merged = dict(self.values)
        merged.update(values)
        return replace(self, values=MappingProxyType(merged))

    def value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


def bot_from_context(ctx: Optional[MatchContext]) -> Optional["Bot"]:
    """Return the bot stored in ``ctx``, or None."""
    if ctx is None:
        return None
    return ctx.bot


def add_bot_to_context(ctx: Optional[MatchContext], bot: Optional["Bot"]) -> MatchContext:
    """Return a new context carrying ``bot``."""
    return (ctx or MatchContext()).with_bot(bot)


def event_from_context(ctx: Optional[MatchContext]) -> Optional["MessageEvent"]:
    """Return the message event stored in ``ctx``, or None."""
    if ctx is None:
        return None
    return ctx.event


def add_event_to_context(
    ctx: Optional[MatchContext], event: Optional["MessageEvent"]
) -> MatchContext:
    """Return a new context carrying ``event``."""
    return (ctx or MatchContext()).with_event(event)
