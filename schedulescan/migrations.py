"""Lightweight schema migrations for databases created by earlier releases."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError


MigrationFunc = Callable[[Engine], None]


def _add_column_if_missing(engine: Engine, table: str, column: str, ddl: str) -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        try:
            columns = inspector.get_columns(table)
        except NoSuchTableError:
            return

        if any(existing["name"] == column for existing in columns):
            return

        connection.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))


def _ensure_event_document_id(engine: Engine) -> None:
    """Events created before documents were tracked only carry ``source_pdf``."""

    _add_column_if_missing(engine, "events", "document_id", "VARCHAR")


def _ensure_document_processing_time(engine: Engine) -> None:
    _add_column_if_missing(engine, "documents", "processing_time_seconds", "FLOAT")


def _ensure_document_confidence(engine: Engine) -> None:
    _add_column_if_missing(engine, "documents", "confidence_score", "FLOAT")


def _ensure_document_upload_metadata(engine: Engine) -> None:
    _add_column_if_missing(engine, "documents", "mime_type", "VARCHAR")
    _add_column_if_missing(
        engine, "documents", "byte_size", "INTEGER NOT NULL DEFAULT 0"
    )


def _backfill_event_document_id(engine: Engine) -> None:
    """Link legacy events to the only document carrying their filename."""

    with engine.begin() as connection:
        inspector = inspect(connection)
        try:
            columns = {column["name"] for column in inspector.get_columns("events")}
            inspector.get_columns("documents")
        except NoSuchTableError:
            return
        if "document_id" not in columns:
            return

        connection.execute(
            text(
                "UPDATE events SET document_id = ("
                " SELECT d.id FROM documents d WHERE d.filename = events.source_pdf"
                ") WHERE document_id IS NULL AND ("
                " SELECT COUNT(*) FROM documents d WHERE d.filename = events.source_pdf"
                ") = 1"
            )
        )


_MIGRATIONS: tuple[MigrationFunc, ...] = (
    _ensure_event_document_id,
    _ensure_document_processing_time,
    _ensure_document_confidence,
    _ensure_document_upload_metadata,
    _backfill_event_document_id,
)


def run_migrations(engine: Engine, migrations: Iterable[MigrationFunc] | None = None) -> None:
    """Execute idempotent schema migrations for the provided engine."""

    for migration in migrations or _MIGRATIONS:
        migration(engine)
