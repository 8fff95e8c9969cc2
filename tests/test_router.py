"""Tests for Router/Route matching and construction."""

import re
from unittest.mock import AsyncMock

import pytest

from switchboard.context import MatchContext
from switchboard.events import MessageEvent, MessageType
from switchboard.exceptions import BuildError
from switchboard.route import RouteMatch
from switchboard.router import Router

BOT_ID = "+15550000000"
USER_ID = "+15551234567"


def _event(text="hello", user=USER_ID, private=False, channel="group-1"):
    return MessageEvent(
        text=text,
        user=user,
        channel=channel,
        private=private,
        group_id=None if private else channel,
    )


def _match(router, event):
    route_match = RouteMatch()
    matched, ctx = router.match(MatchContext(event=event), route_match)
    return matched, route_match, ctx


async def handler_a(ctx):
    pass


async def handler_b(ctx):
    pass


def _always(ctx):
    return True


def _never(ctx):
    return False


# -------------------------------------------------------------------
# Ordering and basic matching
# -------------------------------------------------------------------

class TestRouterMatch:
    """Tests for first-match-wins evaluation."""

    def test_empty_router_never_matches(self):
        router = Router()
        matched, route_match, _ = _match(router, _event("anything"))
        assert matched is False
        assert route_match.handler is None

    def test_first_registered_route_wins(self):
        router = Router()
        router.hear(r"^ping$").handler(handler_a)
        router.hear(r"ping").handler(handler_b)
        matched, route_match, _ = _match(router, _event("ping"))
        assert matched is True
        assert route_match.handler is handler_a
        assert route_match.route is router.routes[0]

    def test_later_route_matches_when_earlier_does_not(self):
        router = Router()
        router.hear(r"^ping$").handler(handler_a)
        router.hear(r"pong").handler(handler_b)
        matched, route_match, _ = _match(router, _event("pong"))
        assert matched is True
        assert route_match.handler is handler_b

    def test_route_without_handler_never_matches(self):
        router = Router()
        router.hear(r"ping")
        matched, _, _ = _match(router, _event("ping"))
        assert matched is False

    def test_no_match_returns_context_unchanged(self):
        router = Router()
        router.add_matcher(_never).preprocess(
            lambda ctx: ctx.with_values(touched=True)
        ).handler(handler_a)
        ctx = MatchContext(event=_event())
        matched, new_ctx = router.match(ctx, RouteMatch())
        assert matched is False
        assert new_ctx is ctx


# -------------------------------------------------------------------
# Matcher combination
# -------------------------------------------------------------------

class TestMatcherCombination:
    """AND across a route's matchers, OR inside the type matcher."""

    def test_and_semantics_one_false(self):
        router = Router()
        router.add_matcher(_always).add_matcher(_never).handler(handler_a)
        matched, _, _ = _match(router, _event())
        assert matched is False

    def test_and_semantics_all_true(self):
        router = Router()
        router.add_matcher(_always).add_matcher(_always).handler(handler_a)
        matched, route_match, _ = _match(router, _event())
        assert matched is True
        assert route_match.handler is handler_a

    def test_first_failing_matcher_short_circuits(self):
        calls = []

        def tracking(ctx):
            calls.append(ctx)
            return True

        router = Router()
        router.add_matcher(_never).add_matcher(tracking).handler(handler_a)
        _match(router, _event())
        assert calls == []

    def test_type_matcher_or_semantics(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        router.messages(
            MessageType.DIRECT_MESSAGE, MessageType.DIRECT_MENTION
        ).handler(handler_a)

        dm = _event("hi", private=True, channel=USER_ID)
        mention = _event(f"@{BOT_ID} hi")
        plain = _event("hi")

        assert _match(router, dm)[0] is True
        assert _match(router, mention)[0] is True
        assert _match(router, plain)[0] is False

    def test_pattern_ignores_leading_mention(self):
        router = Router()
        router.hear(r"^hello$").handler(handler_a)
        assert _match(router, _event("@bot hello"))[0] is True
        assert _match(router, _event("hello"))[0] is True

    def test_hear_flags(self):
        router = Router()
        router.hear(r"^hello$", re.IGNORECASE).handler(handler_a)
        assert _match(router, _event("HeLLo"))[0] is True


# -------------------------------------------------------------------
# Self-talk
# -------------------------------------------------------------------

class TestSelfTalk:
    """Routes refuse the bot's own messages unless allowed."""

    def test_self_authored_event_rejected_by_default(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        route = router.hear(r"^ping$")
        route.handler(handler_a)
        assert _match(router, _event("ping", user=BOT_ID))[0] is False

        route.talk_to_self()
        assert _match(router, _event("ping", user=BOT_ID))[0] is True

    def test_self_talk_filter_uses_id_set_after_route_creation(self):
        router = Router()
        router.hear(r"^ping$").handler(handler_a)
        assert _match(router, _event("ping", user=BOT_ID))[0] is True
        router.set_bot_id(BOT_ID)
        assert _match(router, _event("ping", user=BOT_ID))[0] is False

    def test_router_default_is_snapshotted_at_creation(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        router.always_talk_to_self()
        router.hear(r"^first$").handler(handler_a)
        router.never_talk_to_self()
        router.hear(r"^second$").handler(handler_b)

        assert _match(router, _event("first", user=BOT_ID))[0] is True
        assert _match(router, _event("second", user=BOT_ID))[0] is False

    def test_always_and_never_return_router(self):
        router = Router()
        assert router.always_talk_to_self() is router
        assert router.never_talk_to_self() is router

    def test_router_talk_to_self_builders_force_flag(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        router.talk_to_self().hear(r"^a$").handler(handler_a)
        router.always_talk_to_self()
        router.no_talk_to_self().hear(r"^b$").handler(handler_b)

        assert _match(router, _event("a", user=BOT_ID))[0] is True
        assert _match(router, _event("b", user=BOT_ID))[0] is False

    def test_preprocessor_cannot_bypass_self_talk_filter(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        router.hear(r"^ping$").preprocess(
            lambda ctx: ctx.with_event(_event("ping", user=USER_ID))
        ).handler(handler_a)
        assert _match(router, _event("ping", user=BOT_ID))[0] is False


# -------------------------------------------------------------------
# Preprocessing and context threading
# -------------------------------------------------------------------

class TestPreprocess:
    """Preprocessors feed derived data to matchers and handlers."""

    def test_preprocessor_output_visible_to_matchers_and_result(self):
        router = Router()
        router.new_route().preprocess(
            lambda ctx: ctx.with_values(lang="en")
        ).add_matcher(lambda ctx: ctx.value("lang") == "en").handler(handler_a)

        matched, _, ctx = _match(router, _event())
        assert matched is True
        assert ctx.value("lang") == "en"

    def test_failed_route_does_not_leak_context(self):
        router = Router()
        router.new_route().preprocess(
            lambda ctx: ctx.with_values(leaked=True)
        ).add_matcher(_never).handler(handler_a)
        router.add_matcher(lambda ctx: ctx.value("leaked") is None).handler(handler_b)

        matched, route_match, ctx = _match(router, _event())
        assert matched is True
        assert route_match.handler is handler_b
        assert ctx.value("leaked") is None


# -------------------------------------------------------------------
# Subrouters
# -------------------------------------------------------------------

class TestSubrouter:
    """A route's matchers gate its subrouter, which picks the handler."""

    def _router(self):
        router = Router()
        gate = router.hear(r"^order")
        sub = gate.subrouter()
        sub.hear(r"pizza$").handler(handler_a)
        sub.hear(r"salad$").handler(handler_b)
        return router, sub

    def test_subrouter_handler_is_selected(self):
        router, sub = self._router()
        matched, route_match, _ = _match(router, _event("order pizza"))
        assert matched is True
        assert route_match.handler is handler_a
        assert route_match.route is sub.routes[0]

    def test_gate_must_pass(self):
        router, _ = self._router()
        assert _match(router, _event("pizza"))[0] is False

    def test_subrouter_must_match(self):
        router, _ = self._router()
        assert _match(router, _event("order soup"))[0] is False

    def test_falls_through_to_next_route_when_subrouter_misses(self):
        router, _ = self._router()
        router.hear(r"soup").handler(handler_b)
        matched, route_match, _ = _match(router, _event("order soup"))
        assert matched is True
        assert route_match.route is router.routes[1]

    def test_subrouter_overrides_route_handler(self):
        router = Router()
        route = router.hear(r"^a")
        route.handler(handler_a)
        route.subrouter().hear(r"b$").handler(handler_b)

        matched, route_match, _ = _match(router, _event("ab"))
        assert matched is True
        assert route_match.handler is handler_b

        # No fallback to the route's own handler
        matched, route_match, _ = _match(router, _event("ax"))
        assert matched is False
        assert route_match.handler is None
        assert route_match.route is None

    def test_bot_id_propagates_into_subrouter(self):
        router = Router()
        sub = router.add_matcher(_always).subrouter()
        sub.messages(MessageType.DIRECT_MENTION).handler(handler_a)
        router.set_bot_id(BOT_ID)
        assert sub.bot_id == BOT_ID
        assert _match(router, _event(f"@{BOT_ID} hi"))[0] is True

    def test_subrouter_does_not_inherit_self_talk(self):
        router = Router()
        router.set_bot_id(BOT_ID)
        sub = router.talk_to_self().subrouter()
        sub.hear(r"^ping$").handler(handler_a)
        assert _match(router, _event("ping", user=BOT_ID))[0] is False
        sub.talk_to_self().hear(r"^ping$").handler(handler_b)
        matched, route_match, _ = _match(router, _event("ping", user=BOT_ID))
        assert matched is True
        assert route_match.handler is handler_b


# -------------------------------------------------------------------
# Sticky build errors
# -------------------------------------------------------------------

class TestBuildErrors:
    """Invalid rules disable the chain that contains them."""

    def test_invalid_pattern_sets_router_error(self):
        router = Router()
        route = router.hear(r"(unclosed")
        assert isinstance(router.err, BuildError)
        assert route.err is router.err
        assert router.err.pattern == r"(unclosed"
        assert route.matchers == []

    def test_error_disables_whole_router(self):
        router = Router()
        router.hear(r"^ping$").handler(handler_a)
        router.hear(r"[bad")
        assert _match(router, _event("ping"))[0] is False

    def test_builders_after_error_are_noops_returning_error(self):
        router = Router()
        router.hear(r"(")
        err = router.err
        route = router.hear(r"^ok$")
        assert route.err is err
        assert route.matchers == []
        assert route.handler(handler_a) is err
        assert router.handler(handler_a) is err
        assert router.message_handler(AsyncMock()) is err

    def test_first_error_wins(self):
        router = Router()
        router.hear(r"(")
        first = router.err
        router.new_route().hear(r"[")
        assert router.err is first

    def test_subrouter_error_propagates_to_parent_chain(self):
        router = Router()
        router.hear(r"^fine$").handler(handler_a)
        gate = router.add_matcher(_always)
        sub = gate.subrouter()
        sub.hear(r"(broken")
        assert sub.err is not None
        assert gate.err is sub.err
        assert router.err is sub.err
        assert _match(router, _event("fine"))[0] is False

    def test_subrouter_inherits_existing_error(self):
        router = Router()
        router.hear(r"(")
        sub = router.new_route().subrouter()
        assert sub.err is router.err

    def test_handler_returns_none_without_error(self):
        router = Router()
        assert router.hear(r"^ok$").handler(handler_a) is None
        assert router.err is None


# -------------------------------------------------------------------
# Handlers
# -------------------------------------------------------------------

class TestMessageHandler:
    """message_handler forwards bot and event from the context."""

    @pytest.mark.asyncio
    async def test_message_handler_receives_bot_and_event(self):
        received = []

        async def on_message(ctx, bot, event):
            received.append((ctx, bot, event))

        router = Router()
        router.hear(r"^ping$").message_handler(on_message)
        bot = object()
        event = _event("ping")
        route_match = RouteMatch()
        matched, ctx = router.match(MatchContext(bot=bot, event=event), route_match)
        assert matched is True
        await route_match.handler(ctx)
        assert received == [(ctx, bot, event)]

    @pytest.mark.asyncio
    async def test_message_handler_tolerates_missing_values(self):
        fn = AsyncMock()
        router = Router()
        router.add_matcher(_always).message_handler(fn)
        route_match = RouteMatch()
        matched, ctx = router.match(MatchContext(), route_match)
        assert matched is True
        await route_match.handler(ctx)
        fn.assert_awaited_once_with(ctx, None, None)


# -------------------------------------------------------------------
# End-to-end scenario
# -------------------------------------------------------------------

def test_ping_and_mention_scenario():
    """Hear route first, direct-mention route second, self-talk off."""
    router = Router()
    router.hear(r"^ping$").handler(handler_a)
    router.messages(MessageType.DIRECT_MENTION).handler(handler_b)
    router.set_bot_id("bot")

    matched, route_match, _ = _match(router, _event("ping"))
    assert matched is True
    assert route_match.handler is handler_a

    matched, route_match, _ = _match(router, _event("@bot anything"))
    assert matched is True
    assert route_match.handler is handler_b

    matched, route_match, _ = _match(router, _event("ping", user="bot"))
    assert matched is False
    assert route_match.handler is None
