"""
dynconf service - configuration refresh & outbox relay

Long-running process without HTTP/gRPC servers: keeps the configuration
snapshot of one application fresh and drains its outbox to the messenger.
"""

import asyncio
import contextlib
import signal
from functools import partial

from dynconf.config.settings import Settings
from dynconf.database.postgres import PostgresClient
from dynconf.database.schema import ensure_schema
from dynconf.logger.logger import get_logger, init_logger
from dynconf.logger.postgres_writer import PostgresWriter
from dynconf.logger.types import Category, Level, category, param
from dynconf.reader import ConfigurationReader


async def create_log_writer(settings: Settings) -> PostgresWriter | None:
    """Connect the system_log writer; None if logging to DB is off or fails."""
    if not settings.log_to_db:
        return None

    writer = PostgresWriter(
        dsn=settings.postgres.dsn,
        batch_size=100,
        flush_interval=5.0,
    )
    try:
        await asyncio.to_thread(writer.connect)
    except Exception:
        # connect() уже написал в stderr; работаем с консольным logger
        return None
    writer.start()
    return writer


async def shutdown(
    reader: ConfigurationReader,
    postgres_client: PostgresClient,
    log_writer: PostgresWriter | None,
) -> None:
    """Stop the reader, then release the pool and the log writer."""
    logger = get_logger()
    logger.info("Shutting down dynconf...")

    # 1. Остановить refresh и закрыть соединения reader
    await reader.close()

    # 2. Закрыть пул (reader закрывает его же, повторный close безопасен)
    await postgres_client.close()

    # 3. Дописать буфер system_log и закрыть соединение
    if log_writer is not None:
        await log_writer.close()

    logger.info("Shutdown complete")


async def main() -> None:
    """Run until SIGTERM or SIGINT."""
    settings = Settings()

    log_writer = await create_log_writer(settings)
    init_logger(
        service_name=settings.service_name,
        environment=settings.environment,
        writer=log_writer,
        level=Level(settings.log_level),
    )
    logger = get_logger()

    logger.info(
        "Starting dynconf",
        param("environment", settings.environment),
        param("service_name", settings.service_name),
        param("version", settings.service_version),
        param("application_name", settings.reader.application_name),
    )

    postgres_client = PostgresClient(settings.postgres)
    try:
        await postgres_client.connect()
        await asyncio.to_thread(ensure_schema, postgres_client)
        logger.info("Connected to PostgreSQL", category(Category.DATABASE))
    except Exception as e:
        # reader продолжит попытки по таймеру через circuit breaker
        logger.error("PostgreSQL unavailable at startup", e, category(Category.DATABASE))

    reader = await ConfigurationReader.create(
        settings.reader.application_name,
        settings.postgres.dsn,
        settings.reader.refresh_interval_ms,
        settings.redis.url,
        reader_config=settings.reader,
        redis_config=settings.redis,
        postgres=postgres_client,
    )

    # Остановка по сигналу
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        logger.info("Received signal", param("signal", sig))
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, partial(signal_handler, sig))

    logger.info(
        "dynconf ready",
        param("keys", len(reader.snapshot())),
        param("circuit_state", reader.circuit_state.value),
        param("broker_enabled", reader.broker_enabled),
    )

    try:
        await shutdown_event.wait()
    finally:
        await shutdown(reader, postgres_client, log_writer)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
