"""Signal transport for switchboard.

Bot is a Router bound to a Signal CLI REST API: it authenticates by
looking up the registered account, broadcasts that account id to every
route, receives envelopes over a WebSocket, and dispatches each message
through the rule table. Matching runs inline on the event loop; the
selected handler runs as its own asyncio task so a slow handler never
stalls matching of the next event.

Key classes:
    Bot: Router + Signal connection, reply and typing helpers.

Key functions:
    event_from_envelope: Parse a Signal envelope into a MessageEvent.
    log_task_exception: Done-callback for fire-and-forget handler tasks.
"""

import asyncio
import base64
import copy
import hashlib
import json
import time as _time
from collections import OrderedDict
from typing import List, Optional, Set

import aiohttp
import structlog

from .config import Config, get_config
from .context import MatchContext
from .events import Mention, MessageEvent
from .exceptions import AuthenticationError, ErrorCategory, TransportError
from .route import RouteMatch
from .router import Router

logger = structlog.get_logger("switchboard.bot")
transport_logger = structlog.get_logger("switchboard.transport")

MAX_TYPING_SLEEP = 2.0  # seconds
TYPING_SECONDS_PER_CHAR = 0.002
DEDUP_WINDOW = 60  # seconds
MENTION_PLACEHOLDER = "\ufffc"


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("handler_task_failed", error=str(exc), exc_type=type(exc).__name__)


def _expand_mentions(text: str, mentions: List[Mention]) -> str:
    """Replace mention placeholders with ``@<account>``, last first."""
    for mention in sorted(mentions, key=lambda m: m.start, reverse=True):
        if 0 <= mention.start < len(text):
            text = (
                text[:mention.start]
                + f"@{mention.user}"
                + text[mention.start + mention.length:]
            )
    return text


def event_from_envelope(envelope: dict, account: str) -> Optional[MessageEvent]:
    """Build a MessageEvent from a Signal envelope.

    Handles ordinary ``dataMessage`` envelopes and ``syncMessage.sentMessage``
    envelopes (messages the bot's own account sent from another device,
    authored by ``account``). Returns None for envelopes without text
    (receipts, typing notifications, reactions).
    """
    source = (
        envelope.get("source")
        or envelope.get("sourceNumber")
        or envelope.get("sourceUuid")
    )
    payload = envelope.get("dataMessage")
    author = source
    destination = None
    if not payload:
        sync_message = envelope.get("syncMessage") or {}
        payload = sync_message.get("sentMessage")
        if not payload:
            return None
        author = account
        destination = payload.get("destination") or payload.get("destinationNumber")

    text = payload.get("message") or ""
    if not text.strip() or not author:
        return None

    mentions = [
        Mention(
            start=m.get("start", 0),
            length=m.get("length", 1),
            user=m.get("number") or m.get("uuid"),
            name=m.get("name"),
        )
        for m in payload.get("mentions") or []
        if m.get("number") or m.get("uuid")
    ]
    if MENTION_PLACEHOLDER in text:
        text = _expand_mentions(text, mentions)

    group_id = (payload.get("groupInfo") or {}).get("groupId")
    if group_id:
        channel, private = group_id, False
    else:
        channel, private = destination or author, True

    return MessageEvent(
        text=text,
        user=author,
        channel=channel,
        private=private,
        timestamp=envelope.get("timestamp", 0),
        group_id=group_id,
        mentions=mentions,
    )


class Bot(Router):
    """A Router connected to Signal.

    Register rules with the Router builders, then ``await bot.run()``.
    Authentication happens in start(): the bot id becomes known only
    then, and is pushed down to every route before the first event is
    dispatched.

    Args:
        config: Config instance. Defaults to the global config.
        session: Optional aiohttp session (the bot closes only sessions
            it created itself).
    """

    AUTH_MAX_ATTEMPTS = 12
    AUTH_BASE_DELAY = 5
    AUTH_MAX_DELAY = 15

    def __init__(
        self,
        config: Optional[Config] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        self.config = config or get_config()
        self.session = session
        self._owns_session = session is None
        self.running = False
        # 0 -> no delay. 1 -> 2ms per character, capped at MAX_TYPING_SLEEP
        self.typing_delay_multiplier = self.config.typing_delay_multiplier
        self.debugging = self.config.debug
        self._processed_messages = OrderedDict()  # Dedup: msg_hash -> timestamp
        self._handler_tasks: Set[asyncio.Task] = set()
        if self.config.talk_to_self:
            self.always_talk_to_self()

    def with_debugging(self) -> "Bot":
        """Return a shallow copy of the bot with dispatch debugging enabled.

        Intended to be chained with the constructor; routes are shared
        with the original.
        """
        new_bot = copy.copy(self)
        new_bot.debugging = True
        return new_bot

    @property
    def bot_user_id(self) -> str:
        """The bot's own Signal account id (empty before start())."""
        return self.bot_id

    def _debug(self, event: str, **kw):
        if self.debugging:
            logger.debug(event, **kw)

    # -- lifecycle -------------------------------------------------------

    async def start(self):
        """Open the HTTP session and authenticate.

        Raises:
            AuthenticationError: No usable account is registered.
        """
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        self.running = True

        account = await self._authenticate()
        self.set_bot_id(account)
        logger.info("bot_started", account=account, routes=len(self.routes))
        if self.err is not None:
            logger.warning("router_build_error", error=str(self.err))

    async def stop(self):
        """Cancel running handlers and close the HTTP session."""
        if not self.running and not self._handler_tasks:
            return
        self.running = False
        for task in list(self._handler_tasks):
            task.cancel()
        if self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None
        logger.info("bot_stopped")

    async def run(self):
        """Main run loop: start, poll messages, stop on exit."""
        await self.start()
        try:
            await self.poll_messages()
        finally:
            await self.stop()

    async def _authenticate(self) -> str:
        """Return the account this bot runs as, retrying transient failures."""
        url = f"{self.config.signal_api_url}/v1/accounts"
        wanted = self.config.account

        for attempt in range(1, self.AUTH_MAX_ATTEMPTS + 1):
            try:
                async with self.session.get(
                    url, timeout=aiohttp.ClientTimeout(total=10)
                ) as resp:
                    if resp.status in (401, 403):
                        raise AuthenticationError(
                            "Signal API rejected the request", status=resp.status
                        )
                    if resp.status == 200:
                        accounts = [
                            a if isinstance(a, str) else a.get("number")
                            for a in (await resp.json() or [])
                        ]
                        accounts = [a for a in accounts if a]
                        if not accounts:
                            raise AuthenticationError("No Signal accounts registered")
                        if wanted is None:
                            logger.info("account_found", account=accounts[0])
                            return accounts[0]
                        if wanted in accounts:
                            logger.info("account_found", account=wanted)
                            return wanted
                        raise AuthenticationError(
                            "Configured account is not registered", account=wanted
                        )
                    transport_logger.warning("account_request_failed", status=resp.status)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                transport_logger.warning(
                    "account_request_error", error=str(e), attempt=attempt,
                )

            if attempt < self.AUTH_MAX_ATTEMPTS:
                delay = min(self.AUTH_BASE_DELAY * attempt, self.AUTH_MAX_DELAY)
                await asyncio.sleep(delay)

        logger.error("account_request_failed_all_attempts", attempts=self.AUTH_MAX_ATTEMPTS)
        raise AuthenticationError(
            "Could not reach Signal API",
            category=ErrorCategory.INFRASTRUCTURE,
            attempts=self.AUTH_MAX_ATTEMPTS,
        )

    # -- receiving -------------------------------------------------------

    async def poll_messages(self):
        """Connect via WebSocket to receive messages (json-rpc mode)."""
        if not self.bot_id:
            logger.error("no_account_for_polling")
            return

        ws_base = self.config.signal_api_url.replace(
            "http://", "ws://"
        ).replace("https://", "wss://")
        ws_url = f"{ws_base}/v1/receive/{self.bot_id}"

        reconnect_delay = 5
        MAX_RECONNECT_DELAY = 300

        while self.running:
            try:
                transport_logger.info("websocket_connecting", url=ws_url)
                async with self.session.ws_connect(ws_url, heartbeat=30) as ws:
                    transport_logger.info("websocket_connected")
                    reconnect_delay = 5
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                data = json.loads(msg.data)
                            except json.JSONDecodeError:
                                transport_logger.warning("invalid_json", data=msg.data[:100])
                                continue
                            self.handle_envelope(data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            transport_logger.error("websocket_error", error=str(ws.exception()))
                            break
                        elif msg.type == aiohttp.WSMsgType.CLOSED:
                            transport_logger.info("websocket_closed")
                            break

            except asyncio.CancelledError:
                break
            except Exception as e:
                transport_logger.error("websocket_exception", error=str(e))
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)

    def _is_duplicate(self, event: MessageEvent) -> bool:
        """Remember ``event`` and report whether it was already seen recently."""
        msg_hash = hashlib.sha256(
            f"{event.timestamp}:{event.user}:{event.text.strip()}".encode()
        ).hexdigest()
        now = _time.time()

        cutoff = now - DEDUP_WINDOW
        while self._processed_messages:
            oldest_key, oldest_time = next(iter(self._processed_messages.items()))
            if oldest_time < cutoff:
                self._processed_messages.pop(oldest_key)
            else:
                break

        if msg_hash in self._processed_messages:
            return True
        self._processed_messages[msg_hash] = now
        return False

    def handle_envelope(self, data: dict) -> Optional[asyncio.Task]:
        """Handle one message from the Signal API.

        Returns the scheduled handler task, or None if nothing matched
        or the envelope carried no message.
        """
        try:
            event = event_from_envelope(data.get("envelope") or {}, self.bot_id)
        except (ValueError, TypeError, AttributeError) as e:
            transport_logger.error(
                "envelope_parse_error", error=str(e), msg=str(data)[:200]
            )
            return None

        if event is None:
            return None
        if self._is_duplicate(event):
            self._debug("duplicate_message_skipped", timestamp=event.timestamp)
            return None

        logger.info(
            "processing_message",
            source=event.user, private=event.private, length=len(event.text),
        )
        return self.dispatch(event)

    def dispatch(self, event: MessageEvent) -> Optional[asyncio.Task]:
        """Match ``event`` and schedule the selected handler.

        Must be called from a running event loop. The handler runs as a
        separate task; its failures are logged, never raised here. A
        matcher, preprocessor or handler that raises while being matched
        or called is logged and the event dropped, so one broken rule
        cannot take down the receive loop.
        """
        ctx = MatchContext(bot=self, event=event)
        route_match = RouteMatch()
        try:
            matched, ctx = self.match(ctx, route_match)
        except Exception as e:
            logger.error(
                "message_handling_error", error=str(e), exc_type=type(e).__name__,
            )
            return None
        if not matched or route_match.handler is None:
            self._debug("no_route_matched", source=event.user)
            return None

        name = getattr(route_match.handler, "__name__", repr(route_match.handler))
        self._debug("dispatching", handler=name)
        try:
            coro = route_match.handler(ctx)
        except Exception as e:
            logger.error(
                "message_handling_error", error=str(e),
                exc_type=type(e).__name__, handler=name,
            )
            return None
        if not asyncio.iscoroutine(coro):
            logger.error("handler_not_coroutine", handler=name)
            return None

        task = asyncio.create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_done)
        return task

    def _handler_done(self, task: asyncio.Task):
        self._handler_tasks.discard(task)
        log_task_exception(task)

    # -- sending ---------------------------------------------------------

    @staticmethod
    def recipient_for(event: MessageEvent) -> str:
        """Signal API recipient for a reply to ``event``."""
        if event.group_id:
            encoded = base64.b64encode(event.group_id.encode()).decode()
            return f"group.{encoded}"
        return event.channel

    async def reply(self, event: MessageEvent, text: str):
        """Reply to a message event with a simple message.

        Raises:
            TransportError: The Signal API did not accept the message.
        """
        if self.typing_delay_multiplier > 0:
            await self.type_by_message(event, text)

        payload = {
            "message": text,
            "number": self.bot_id,
            "recipients": [self.recipient_for(event)],
        }
        url = f"{self.config.signal_api_url}/v2/send"
        try:
            async with self.session.post(url, json=payload) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    transport_logger.warning("send_failed", status=resp.status, body=body[:200])
                    raise TransportError("Signal API rejected message", status=resp.status)
        except aiohttp.ClientError as e:
            transport_logger.error("send_error", error=str(e))
            raise TransportError(f"send failed: {e}") from e

    async def type(self, event: MessageEvent):
        """Show a typing indicator in the event's channel."""
        url = f"{self.config.signal_api_url}/v1/typing-indicator/{self.bot_id}"
        try:
            async with self.session.put(
                url, json={"recipient": self.recipient_for(event)}
            ) as resp:
                if resp.status >= 300:
                    transport_logger.debug("typing_failed", status=resp.status)
        except aiohttp.ClientError as e:
            transport_logger.debug("typing_error", error=str(e))

    async def type_by_message(self, event: MessageEvent, msg: str):
        """Show typing, then wait in proportion to ``msg`` length (max 2s)."""
        delay = min(
            len(msg) * TYPING_SECONDS_PER_CHAR * self.typing_delay_multiplier,
            MAX_TYPING_SLEEP,
        )
        await self.type(event)
        await asyncio.sleep(delay)
