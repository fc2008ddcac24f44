"""Configuration record repository for PostgreSQL."""

from collections.abc import Callable
from typing import Any

from psycopg2.extras import RealDictCursor

from dynconf.database.postgres import PostgresClient
from dynconf.domain.config import ConfigurationRecord, utcnow
from dynconf.domain.errors import InvalidArgumentError
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

SELECT_COLUMNS = """
    SELECT id, application_name, name, type, value, is_active,
           created_at, updated_at
    FROM configuration_record
"""

# Колонки, по которым разрешена фильтрация в find()
FILTER_COLUMNS = frozenset({"id", "application_name", "name", "type", "is_active"})


class ConfigRepository:
    """Repository for ConfigurationRecord CRUD operations in PostgreSQL."""

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize ConfigRepository.

        Args:
            postgres_client: PostgreSQL client instance
        """
        self.postgres = postgres_client
        self.logger = get_logger().with_category(Category.DATABASE)

    def insert(self, record: ConfigurationRecord) -> int:
        """
        Insert new configuration record.

        Args:
            record: ConfigurationRecord to save

        Returns:
            ID of inserted record
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO configuration_record (
                        application_name, name, type, value, is_active,
                        created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        record.application_name,
                        record.name,
                        record.type,
                        record.value,
                        record.is_active,
                        record.created_at,
                        record.updated_at,
                    ),
                )
                record_id = cur.fetchone()[0]
            conn.commit()

            record.id = record_id
            self.logger.info(
                f"Configuration record added: {record.name}",
                param("record_id", record_id),
                param("application_name", record.application_name),
                param("is_active", record.is_active),
            )
            return record_id

        except Exception as e:
            conn.rollback()
            self.logger.error(
                f"Failed to add configuration record {record.name}",
                e,
                param("application_name", record.application_name),
            )
            raise
        finally:
            self.postgres.put_connection(conn)

    def replace_by_id(self, record_id: int, record: ConfigurationRecord) -> bool:
        """
        Replace every field of the record with the given id.

        No concurrency token: the last writer wins. created_at is preserved,
        updated_at is stamped now.

        Args:
            record_id: ID of the record to replace
            record: New record content

        Returns:
            True if a record was replaced, False if the id does not exist
        """
        updated_at = record.updated_at or utcnow()
        conn = self.postgres.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE configuration_record SET
                        application_name = %s,
                        name = %s,
                        type = %s,
                        value = %s,
                        is_active = %s,
                        updated_at = %s
                    WHERE id = %s
                    """,
                    (
                        record.application_name,
                        record.name,
                        record.type,
                        record.value,
                        record.is_active,
                        updated_at,
                        record_id,
                    ),
                )
                replaced = cur.rowcount > 0
            conn.commit()

            record.id = record_id
            record.updated_at = updated_at
            if replaced:
                self.logger.info(
                    f"Configuration record replaced: {record.name}",
                    param("record_id", record_id),
                    param("application_name", record.application_name),
                )
            else:
                self.logger.warn(
                    "Configuration record to replace not found",
                    param("record_id", record_id),
                )
            return replaced

        except Exception as e:
            conn.rollback()
            self.logger.error(
                f"Failed to replace configuration record {record_id}",
                e,
                param("record_id", record_id),
            )
            raise
        finally:
            self.postgres.put_connection(conn)

    def find_active(self, application_name: str) -> list[ConfigurationRecord]:
        """
        Get all active records of an application.

        Rows come back oldest update first, so when a name is duplicated the
        most recently updated record is the last one seen.

        Args:
            application_name: Application whose records to load

        Returns:
            List of active records
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    SELECT_COLUMNS
                    + """
                    WHERE is_active = TRUE
                      AND application_name = %s
                    ORDER BY COALESCE(updated_at, created_at), created_at, id
                    """,
                    (application_name,),
                )
                rows = cur.fetchall()

            return [ConfigurationRecord.from_row(row) for row in rows]

        finally:
            self.postgres.put_connection(conn)

    def find(
        self,
        predicate: Callable[[ConfigurationRecord], bool] | None = None,
        **filters: Any,
    ) -> tuple[ConfigurationRecord, ...]:
        """
        Query records, bypassing any cache.

        Args:
            predicate: Optional filter applied to each fetched record
            **filters: Column equality filters pushed down to SQL

        Returns:
            Read-only tuple of matching records

        Raises:
            InvalidArgumentError: If a filter names an unknown column
        """
        unknown = set(filters) - FILTER_COLUMNS
        if unknown:
            raise InvalidArgumentError(
                f"Unknown filter fields: {', '.join(sorted(unknown))}",
                argument="filters",
            )

        columns = sorted(filters)
        where = " AND ".join(f"{column} = %s" for column in columns)
        query = SELECT_COLUMNS + (f" WHERE {where}" if where else "") + " ORDER BY id"

        conn = self.postgres.get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, tuple(filters[column] for column in columns))
                rows = cur.fetchall()
        finally:
            self.postgres.put_connection(conn)

        records = (ConfigurationRecord.from_row(row) for row in rows)
        if predicate is None:
            return tuple(records)
        return tuple(record for record in records if predicate(record))

    def find_active_duplicate(
        self, application_name: str, name: str, exclude_id: int | None = None
    ) -> ConfigurationRecord | None:
        """
        Find another active record with the same logical key.

        Args:
            application_name: Application name
            name: Record name
            exclude_id: Record id to ignore (the record being replaced)

        Returns:
            Conflicting record or None
        """
        matches = self.find(
            lambda record: record.id != exclude_id,
            application_name=application_name,
            name=name,
            is_active=True,
        )
        return matches[0] if matches else None
