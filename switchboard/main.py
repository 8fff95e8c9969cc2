"""Main entry point for switchboard.

Initializes logging in two phases (defaults then config-driven),
creates the Bot, registers the demo rule set, and runs the async event
loop with graceful shutdown on SIGTERM/SIGINT.

Key functions:
    register_routes: The demo rules (ping, greetings, help).
    main: Async entry point.
    run: Synchronous wrapper for the ``switchboard`` console script.
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .events import MessageType, strip_direct_mention
from .logging_config import setup_logging

HELP_TEXT = (
    "I answer to:\n"
    "  ping - pong\n"
    "  how are you - small talk (DM or @mention me)\n"
    "  help - this message"
)


async def pong(ctx, bot, event):
    await bot.reply(event, "pong")


async def how_are_you(ctx, bot, event):
    await bot.reply(event, "A bit tired. You get it? A bit?")


async def show_help(ctx, bot, event):
    await bot.reply(event, HELP_TEXT)


async def greet(ctx, bot, event):
    name = ctx.value("first_word") or "there"
    await bot.reply(event, f"Hi {name}! Say 'help' to see what I can do.")


def _first_word(ctx):
    text = ctx.event.text if ctx.event else ""
    words = strip_direct_mention(text).split()
    return ctx.with_values(first_word=words[0] if words else None)


def register_routes(bot):
    """Register the demo rule set on ``bot``. Returns the sticky build error."""
    bot.hear(r"(?i)^ping$").message_handler(pong)
    bot.hear(r"(?i)^help$").message_handler(show_help)

    # Small talk only when addressed directly
    addressed = bot.messages(MessageType.DIRECT_MESSAGE, MessageType.DIRECT_MENTION)
    small_talk = addressed.subrouter()
    small_talk.hear(r"(?i)how are you").message_handler(how_are_you)
    small_talk.new_route().preprocess(_first_word).message_handler(greet)

    return bot.err


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("switchboard")

    logger.info("switchboard_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot import Bot
    from .config import get_config

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    bot = Bot(config)
    if config.debug:
        bot = bot.with_debugging()

    err = register_routes(bot)
    if err is not None:
        logger.error("route_registration_failed", error=str(err))
        raise err

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        bot_task = asyncio.create_task(bot.run())
        shutdown_waiter = asyncio.create_task(shutdown_event.wait())

        done, _ = await asyncio.wait(
            {bot_task, shutdown_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        shutdown_waiter.cancel()
        if bot_task in done:
            # Surfaces AuthenticationError and friends
            bot_task.result()
        else:
            bot_task.cancel()
            try:
                await bot_task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await bot.stop()
        logger.info("switchboard_stopped")


def run():
    """Synchronous entry point for the ``switchboard`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except SystemExit as e:
        sys.exit(e.code)


if __name__ == "__main__":
    run()
