"""Shared pytest fixtures for dynconf tests."""

import pytest

from dynconf.logger.error_sink import ErrorSink
from dynconf.logger.logger import get_logger, init_logger
from fakes import (
    FakeClock,
    FakeConfigRepository,
    FakeOutboxRepository,
    FakeRedisClient,
    RecordingWriter,
)


@pytest.fixture(autouse=True)
def log_writer() -> RecordingWriter:
    """Route all structured logs to memory."""
    writer = RecordingWriter()
    init_logger("dynconf-test", "test", writer=writer)  # type: ignore[arg-type]
    return writer


@pytest.fixture
def error_sink(log_writer: RecordingWriter) -> ErrorSink:
    return ErrorSink(get_logger())


@pytest.fixture
def config_repo() -> FakeConfigRepository:
    return FakeConfigRepository()


@pytest.fixture
def outbox_repo() -> FakeOutboxRepository:
    return FakeOutboxRepository()


@pytest.fixture
def redis_client() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
