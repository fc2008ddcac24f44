"""Tests for the PostgreSQL repositories against a mocked connection."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from dynconf.database.postgres import PostgresClient, PostgresConfig
from dynconf.domain.errors import InvalidArgumentError, StorageUnavailableError
from dynconf.domain.outbox import OutboxRecord
from dynconf.repository.config_repository import ConfigRepository
from dynconf.repository.outbox_repository import OutboxRepository
from fakes import make_record

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def postgres():
    return MagicMock()


@pytest.fixture
def conn(postgres):
    return postgres.get_connection.return_value


@pytest.fixture
def cursor(conn):
    return conn.cursor.return_value.__enter__.return_value


def config_row(record_id: int, name: str, value: str, type_tag: str = "string") -> dict:
    return {
        "id": record_id,
        "application_name": "SERVICE-A",
        "name": name,
        "type": type_tag,
        "value": value,
        "is_active": True,
        "created_at": NOW,
        "updated_at": None,
    }


class TestConfigRepository:
    def test_insert_returns_id(self, postgres, conn, cursor):
        cursor.fetchone.return_value = (42,)
        record = make_record("MaxItemCount", "50", "int")

        record_id = ConfigRepository(postgres).insert(record)

        assert record_id == 42
        assert record.id == 42
        conn.commit.assert_called_once()
        postgres.put_connection.assert_called_once_with(conn)

    def test_insert_rolls_back_on_error(self, postgres, conn, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

        with pytest.raises(psycopg2.OperationalError):
            ConfigRepository(postgres).insert(make_record("MaxItemCount", "50", "int"))

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        postgres.put_connection.assert_called_once_with(conn)

    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_replace_by_id(self, postgres, cursor, rowcount, expected):
        cursor.rowcount = rowcount
        record = make_record("MaxItemCount", "60", "int")

        replaced = ConfigRepository(postgres).replace_by_id(7, record)

        assert replaced is expected
        assert record.id == 7
        assert record.updated_at is not None
        sql, params = cursor.execute.call_args.args
        assert "WHERE id = %s" in sql
        assert params[-1] == 7

    def test_find_active_orders_by_last_update(self, postgres, cursor):
        cursor.fetchall.return_value = [config_row(1, "MaxItemCount", "50", "int")]

        records = ConfigRepository(postgres).find_active("SERVICE-A")

        assert [r.typed_value() for r in records] == [50]
        sql, params = cursor.execute.call_args.args
        assert "is_active = TRUE" in sql
        assert "ORDER BY COALESCE(updated_at, created_at), created_at, id" in sql
        assert params == ("SERVICE-A",)

    def test_find_builds_where_clause(self, postgres, cursor):
        cursor.fetchall.return_value = [
            config_row(1, "SiteName", "example.com"),
            config_row(2, "MaxItemCount", "50", "int"),
        ]

        records = ConfigRepository(postgres).find(
            lambda r: r.type == "int", name="MaxItemCount", application_name="SERVICE-A"
        )

        assert [r.id for r in records] == [2]
        sql, params = cursor.execute.call_args.args
        assert "WHERE application_name = %s AND name = %s" in sql
        assert params == ("SERVICE-A", "MaxItemCount")

    def test_find_without_filters(self, postgres, cursor):
        cursor.fetchall.return_value = []

        assert ConfigRepository(postgres).find() == ()
        sql, params = cursor.execute.call_args.args
        assert "WHERE" not in sql
        assert params == ()

    def test_find_rejects_unknown_filter(self, postgres):
        with pytest.raises(InvalidArgumentError):
            ConfigRepository(postgres).find(value="50")
        postgres.get_connection.assert_not_called()

    def test_find_active_duplicate_excludes_self(self, postgres, cursor):
        cursor.fetchall.return_value = [config_row(3, "MaxItemCount", "50", "int")]
        repository = ConfigRepository(postgres)

        assert repository.find_active_duplicate("SERVICE-A", "MaxItemCount", exclude_id=3) is None
        assert repository.find_active_duplicate("SERVICE-A", "MaxItemCount").id == 3


class TestOutboxRepository:
    def test_add(self, postgres, conn, cursor):
        cursor.fetchone.return_value = (5,)
        record = OutboxRecord(key="MaxItemCount", value="60", application_name="SERVICE-A")

        assert OutboxRepository(postgres).add(record) == 5
        assert record.id == 5
        assert record.published is False
        conn.commit.assert_called_once()

    def test_get_unpublished(self, postgres, cursor):
        cursor.fetchall.return_value = [
            {
                "id": 5,
                "application_name": "SERVICE-A",
                "key": "MaxItemCount",
                "value": "60",
                "published": False,
                "created_at": NOW,
                "published_at": None,
            }
        ]

        records = OutboxRepository(postgres).get_unpublished("SERVICE-A")

        assert records[0].key == "MaxItemCount"
        sql, _ = cursor.execute.call_args.args
        assert "published = FALSE" in sql
        assert "ORDER BY created_at, id" in sql

    def test_get_unpublished_defaults_to_whole_table(self, postgres, cursor):
        cursor.fetchall.return_value = []

        assert OutboxRepository(postgres).get_unpublished() == []
        _, params = cursor.execute.call_args.args
        assert params == (None, None)

    def test_mark_published_only_flips_pending(self, postgres, cursor):
        cursor.rowcount = 0

        assert OutboxRepository(postgres).mark_published(5) is False
        sql, params = cursor.execute.call_args.args
        assert "WHERE id = %s AND published = FALSE" in sql
        assert params[1] == 5

    def test_mark_published_rolls_back(self, postgres, conn, cursor):
        cursor.execute.side_effect = psycopg2.InterfaceError("connection already closed")

        with pytest.raises(psycopg2.InterfaceError):
            OutboxRepository(postgres).mark_published(5)
        conn.rollback.assert_called_once()

    def test_purge_published(self, postgres, cursor):
        cursor.rowcount = 3

        assert OutboxRepository(postgres).purge_published(NOW) == 3
        sql, params = cursor.execute.call_args.args
        assert "published = TRUE" in sql
        assert params == (NOW,)


class TestPostgresClient:
    @pytest.fixture
    def pool_cls(self):
        with patch("dynconf.database.postgres.ThreadedConnectionPool") as pool_cls:
            yield pool_cls

    @pytest.fixture
    def client(self):
        return PostgresClient(PostgresConfig(connection_string="dbname=configuration_test"))

    def test_pool_opens_on_first_use(self, client, pool_cls):
        conn = client.get_connection()

        pool_cls.assert_called_once()
        assert conn is pool_cls.return_value.getconn.return_value

    @pytest.mark.asyncio
    async def test_closed_pool_is_not_reopened_lazily(self, client, pool_cls):
        client.get_connection()
        await client.close()

        with pytest.raises(StorageUnavailableError):
            client.get_connection()
        assert pool_cls.call_count == 1
        pool_cls.return_value.closeall.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_reopens_after_close(self, client, pool_cls):
        await client.close()
        await client.connect()

        client.get_connection()
        assert pool_cls.call_count == 1

    @pytest.mark.asyncio
    async def test_connection_returned_after_close_is_closed(self, client, pool_cls):
        conn = client.get_connection()
        await client.close()

        client.put_connection(conn)

        conn.close.assert_called_once()
        pool_cls.return_value.putconn.assert_not_called()
