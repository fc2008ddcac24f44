"""DDL for the configuration store."""

from dynconf.database.postgres import PostgresClient

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS configuration_record (
        id BIGSERIAL PRIMARY KEY,
        application_name TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'string',
        value TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_configuration_record_app_active
        ON configuration_record (application_name, is_active)
    """,
    """
    CREATE TABLE IF NOT EXISTS outbox (
        id BIGSERIAL PRIMARY KEY,
        application_name TEXT NOT NULL DEFAULT '',
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        published BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        published_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_outbox_pending
        ON outbox (application_name, created_at, id) WHERE published = FALSE
    """,
    """
    CREATE TABLE IF NOT EXISTS system_log (
        id BIGSERIAL PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        service_name TEXT,
        instance_id TEXT,
        environment TEXT,
        level TEXT NOT NULL,
        category TEXT,
        function_name TEXT,
        file_path TEXT,
        line_number INTEGER,
        message TEXT NOT NULL,
        exception_details TEXT,
        context JSONB,
        duration_ms INTEGER
    )
    """,
)


def ensure_schema(postgres: PostgresClient) -> None:
    """Create tables and indexes if they do not exist."""
    conn = postgres.get_connection()
    try:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        postgres.put_connection(conn)
