"""
Schema verification tests for the audit_log table.

Ensures the table supports retention queries:
- Required columns and nullability
- Composite (action, created_at) index for range deletes
- Alembic migration produces the same table
"""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect
from sqlalchemy.types import DateTime

MIGRATION_FILE = (
    Path(__file__).parent.parent.parent / "migrations" / "versions" / "001_create_audit_log_table.py"
)


def load_migration():
    spec = importlib.util.spec_from_file_location("create_audit_log_table", MIGRATION_FILE)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def describe(engine):
    inspector = inspect(engine)
    columns = {col["name"]: col for col in inspector.get_columns("audit_log")}
    indexes = {ix["name"]: ix["column_names"] for ix in inspector.get_indexes("audit_log")}
    return inspector, columns, indexes


class TestAuditLogModelTable:
    """Verify the table created from the ORM model."""

    def test_columns(self, db_engine):
        inspector, columns, _ = describe(db_engine)

        assert set(columns) == {"id", "user_id", "action", "message", "created_at", "ip_address"}
        assert inspector.get_pk_constraint("audit_log")["constrained_columns"] == ["id"]
        assert columns["action"]["nullable"] is False
        assert columns["created_at"]["nullable"] is False
        assert columns["user_id"]["nullable"] is True
        assert isinstance(columns["created_at"]["type"], DateTime)

    def test_retention_indexes(self, db_engine):
        """Verify the indexes used by cutoff range scans exist."""
        _, _, indexes = describe(db_engine)

        assert indexes["ix_audit_log_action_created_at"] == ["action", "created_at"]
        assert indexes["ix_audit_log_created_at"] == ["created_at"]


class TestAuditLogMigration:
    """Verify the Alembic migration matches the model."""

    @pytest.fixture
    def migrated_engine(self):
        engine = create_engine("sqlite://")
        migration = load_migration()
        with engine.begin() as connection:
            context = MigrationContext.configure(connection)
            with Operations.context(context):
                migration.upgrade()
        yield engine, migration
        engine.dispose()

    def test_upgrade_creates_table_and_indexes(self, migrated_engine, db_engine):
        engine, _ = migrated_engine

        _, columns, indexes = describe(engine)
        _, model_columns, model_indexes = describe(db_engine)

        assert set(columns) == set(model_columns)
        assert indexes == model_indexes

    def test_downgrade_drops_table(self, migrated_engine):
        engine, migration = migrated_engine

        with engine.begin() as connection:
            context = MigrationContext.configure(connection)
            with Operations.context(context):
                migration.downgrade()

        assert "audit_log" not in inspect(engine).get_table_names()
