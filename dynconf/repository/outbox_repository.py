"""Outbox repository for PostgreSQL."""

from datetime import datetime

from psycopg2.extras import RealDictCursor

from dynconf.database.postgres import PostgresClient
from dynconf.domain.config import utcnow
from dynconf.domain.outbox import OutboxRecord
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param


class OutboxRepository:
    """Repository for pending change notifications."""

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize OutboxRepository.

        Args:
            postgres_client: PostgreSQL client instance
        """
        self.postgres = postgres_client
        self.logger = get_logger().with_category(Category.OUTBOX)

    def add(self, record: OutboxRecord) -> int:
        """
        Persist a new unpublished outbox record.

        Args:
            record: OutboxRecord to save

        Returns:
            ID of inserted record
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO outbox (application_name, key, value, published, created_at)
                    VALUES (%s, %s, %s, FALSE, %s)
                    RETURNING id
                    """,
                    (record.application_name, record.key, record.value, record.created_at),
                )
                record_id = cur.fetchone()[0]
            conn.commit()

            record.id = record_id
            record.published = False
            self.logger.debug(
                f"Outbox record added: {record.key}",
                param("outbox_id", record_id),
                param("application_name", record.application_name),
            )
            return record_id

        except Exception as e:
            conn.rollback()
            self.logger.error(
                f"Failed to add outbox record for {record.key}",
                e,
                param("application_name", record.application_name),
            )
            raise
        finally:
            self.postgres.put_connection(conn)

    def get_unpublished(self, application_name: str | None = None) -> list[OutboxRecord]:
        """
        Get unpublished records in creation order.

        Args:
            application_name: Only this application's records; None reads
                the whole table

        Returns:
            Unpublished records, oldest first
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, application_name, key, value, published,
                           created_at, published_at
                    FROM outbox
                    WHERE published = FALSE
                      AND (%s IS NULL OR application_name = %s)
                    ORDER BY created_at, id
                    """,
                    (application_name, application_name),
                )
                rows = cur.fetchall()

            return [OutboxRecord.from_row(row) for row in rows]

        finally:
            self.postgres.put_connection(conn)

    def mark_published(self, record_id: int) -> bool:
        """
        Flip published to True.

        The update only matches unpublished rows, so the flag never goes
        back and a second call is a no-op.

        Args:
            record_id: Outbox record ID

        Returns:
            True if the row changed
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE outbox
                    SET published = TRUE, published_at = %s
                    WHERE id = %s AND published = FALSE
                    """,
                    (utcnow(), record_id),
                )
                changed = cur.rowcount > 0
            conn.commit()
            return changed

        except Exception:
            conn.rollback()
            raise
        finally:
            self.postgres.put_connection(conn)

    def purge_published(self, older_than: datetime) -> int:
        """
        Delete published records created before a cutoff.

        Unpublished records are never deleted.

        Args:
            older_than: Cutoff timestamp

        Returns:
            Number of deleted rows
        """
        conn = self.postgres.get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM outbox
                    WHERE published = TRUE AND created_at < %s
                    """,
                    (older_than,),
                )
                deleted = cur.rowcount
            conn.commit()

            if deleted:
                self.logger.info(
                    "Published outbox records purged",
                    param("deleted", deleted),
                    param("older_than", older_than.isoformat()),
                )
            return deleted

        except Exception:
            conn.rollback()
            raise
        finally:
            self.postgres.put_connection(conn)
