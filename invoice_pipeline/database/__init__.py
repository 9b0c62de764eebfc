from invoice_pipeline.database.manager import DatabaseManager
from invoice_pipeline.database.memory import InMemoryJobStore
from invoice_pipeline.database.ports import JobStore
from invoice_pipeline.database.postgres import PostgresJobStore
from invoice_pipeline.database.schema import apply_schema, migrate

__all__ = ["DatabaseManager", "InMemoryJobStore", "JobStore", "PostgresJobStore", "apply_schema", "migrate"]
