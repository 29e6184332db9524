"""
Database migration utilities.
"""
import os
from sqlalchemy import text
from . import engine
from ..models import Base
from ..logging_config import logger


def run_sql_migrations():
    """
    Create the schema and run all SQL migration files in the scripts directory.

    Order:
    1. Enable the pgvector extension (the ORM tables need the vector type)
    2. Create any missing tables from the ORM models
    3. Run scripts/*.sql in sorted order (indexes and other DDL)

    Migration files should:
    - Be named with a sortable prefix (e.g., 001_vector_index.sql)
    - End with .sql extension
    - Be idempotent (safe to run multiple times)

    Raises:
        Exception: If any migration fails
    """
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ensured", tables=sorted(Base.metadata.tables))

    migrations_dir = os.path.join(os.path.dirname(__file__), "scripts")
    if not os.path.exists(migrations_dir):
        logger.warning("Migrations directory not found", path=migrations_dir)
        return

    migration_files = sorted(
        f for f in os.listdir(migrations_dir)
        if f.endswith(".sql")
    )

    if not migration_files:
        logger.info("No migration files found", path=migrations_dir)
        return

    with engine.begin() as conn:
        for filename in migration_files:
            filepath = os.path.join(migrations_dir, filename)
            logger.info("Running migration", migration=filename)

            with open(filepath, "r", encoding="utf-8") as f:
                sql = f.read()

            conn.execute(text(sql))

    logger.info("Migrations completed", count=len(migration_files))
