import asyncio
import signal
from typing import Any

from loguru import logger

from dispatcher.app.application.seeding import seed_messages
from dispatcher.app.composition import create_worker_dependencies
from dispatcher.app.config.settings import Settings
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.core.logging import configure_logging


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_worker(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    deps = create_worker_dependencies(settings)
    await deps.connect()

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    try:
        if settings.seed_message_count > 0:
            await seed_messages(
                deps.repository,
                settings.seed_message_count,
                recipient=settings.seed_recipient,
            )
        deps.dispatch_worker.start()
        await shutdown.wait()
    finally:
        await deps.close()
        _log("dispatcher_stopped")


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, serialize=settings.log_serialize)
    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        _log("dispatcher_interrupted")
    except Exception as e:
        logger.exception("dispatcher failed: {}", e)
        raise


if __name__ == "__main__":
    main()
