"""Main entry point for promptwire.

Starts the Signal bot and keeps it receiving until SIGTERM or SIGINT.
On shutdown the bot closes every open prompt and tells its user before
the process exits.
"""

import asyncio
import signal

import structlog

from .logging_config import setup_logging

VERSION = "0.1.0"


async def main():
    """Main async entry point."""
    setup_logging()
    logger = structlog.get_logger("promptwire")

    logger.info("promptwire_starting", version=VERSION)

    # Module-level loggers in these imports bind to the console setup above
    from .bot import SignalBot
    from .config import get_config

    config = get_config()
    config.validate()

    setup_logging(config)

    bot = SignalBot(config)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # No loop signal handlers on this platform
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        bot_task = asyncio.create_task(bot.run())
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        # bot.run() raises if no Signal account is registered
        done, _ = await asyncio.wait(
            {bot_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        shutdown_task.cancel()

        if bot_task in done:
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
        logger.info("promptwire_stopped")


def run():
    """Synchronous entry point for the ``promptwire`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
