"""
DDL for the jobs and job_results tables.

Statements are idempotent so ``apply_schema`` can run on every deploy.
Run as ``invoice-pipeline-migrate`` or ``python -m invoice_pipeline.database.schema``.
"""

import asyncio
import logging
from typing import Optional

import asyncpg

from invoice_pipeline.core.logging_config import configure_structured_logging
from invoice_pipeline.core.settings import AppSettings, DatabaseSettings
from invoice_pipeline.database.manager import DatabaseManager

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    DO $$ BEGIN
        CREATE TYPE job_status AS ENUM ('queued', 'processing', 'completed', 'failed');
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        client_id VARCHAR(50),
        status job_status NOT NULL DEFAULT 'queued',
        processing_phase TEXT CHECK (
            processing_phase IS NULL
            OR processing_phase IN ('analyzing_invoice', 'extracting_data', 'verifying_data')
        ),
        source_url VARCHAR(2048) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        completed_at TIMESTAMPTZ,
        error_message TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS job_results (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        job_id UUID NOT NULL UNIQUE REFERENCES jobs(id),
        extracted_data JSONB,
        confidence_score NUMERIC(3, 2),
        tokens_used INTEGER,
        raw_ocr_text TEXT,
        ocr_provider VARCHAR(64),
        ocr_duration_ms INTEGER,
        ocr_pages INTEGER,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_client_id ON jobs(client_id);",
    """
    CREATE OR REPLACE FUNCTION update_updated_at()
    RETURNS TRIGGER AS $$
    BEGIN
        NEW.updated_at = NOW();
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
    """,
    """
    DO $$ BEGIN
        CREATE TRIGGER trigger_jobs_updated_at
            BEFORE UPDATE ON jobs
            FOR EACH ROW
            EXECUTE FUNCTION update_updated_at();
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;
    """,
)


async def apply_schema(pool: asyncpg.Pool) -> None:
    """Create types, tables, indexes and triggers if missing."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
    logger.info(f"Applied schema ({len(SCHEMA_STATEMENTS)} statements)")


async def migrate(settings: Optional[DatabaseSettings] = None) -> None:
    """Open a pool from settings and apply the schema."""
    async with DatabaseManager.from_settings(settings or DatabaseSettings()) as db:
        await apply_schema(await db.get_pool())


def main() -> None:
    app_settings = AppSettings()
    configure_structured_logging(app_settings.LOG_LEVEL, app_settings.LOG_JSON)
    asyncio.run(migrate())


if __name__ == "__main__":
    main()
