"""Database connection and schema management."""

import duckdb
from typing import Optional
from pathlib import Path
from ..utils.logger import get_app_logger


class DatabaseConnection:
    """DuckDB connection manager."""

    def __init__(self, db_path: str = "./data/hrsync.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
        """
        self.db_path = db_path
        self.logger = get_app_logger()
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

        # Ensure database directory exists
        if db_path != ":memory:":
            db_dir = Path(db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)

        self._connect()
        self._init_schema()

    def _connect(self):
        """Connect to DuckDB database."""
        try:
            self.conn = duckdb.connect(self.db_path)
            self.logger.info(f"Connected to DuckDB at {self.db_path}")
        except Exception as e:
            self.logger.error(f"Failed to connect to DuckDB: {e}")
            raise

    def _init_schema(self):
        """
        Initialize database schema.

        Each table keeps the full document as JSON and copies the fields
        that queries filter or sort on into typed columns. Timestamps are
        stored as epoch seconds.
        """
        try:
            # Conversation threads table
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS conversation_threads (
                    id VARCHAR NOT NULL,
                    owner_id VARCHAR NOT NULL,
                    session_id VARCHAR,
                    updated_at DOUBLE NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    doc JSON NOT NULL,
                    PRIMARY KEY (id, owner_id)
                )
            """)

            # Deletion requests table
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS deletion_requests (
                    id VARCHAR NOT NULL,
                    owner_id VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    requested_at DOUBLE NOT NULL,
                    scheduled_deletion_at DOUBLE NOT NULL,
                    doc JSON NOT NULL,
                    PRIMARY KEY (id, owner_id)
                )
            """)

            # Submission queue table
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS submission_queue (
                    id VARCHAR NOT NULL,
                    owner_id VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    created_at DOUBLE NOT NULL,
                    next_retry_at DOUBLE,
                    lease_expires_at DOUBLE,
                    expires_at DOUBLE,
                    version INTEGER NOT NULL DEFAULT 0,
                    doc JSON NOT NULL,
                    PRIMARY KEY (id, owner_id)
                )
            """)

            # Create indexes
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_threads_owner ON conversation_threads(owner_id)")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_deletion_owner ON deletion_requests(owner_id)")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_queue_owner ON submission_queue(owner_id)")

            self.logger.info("Database schema initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database schema: {e}")
            raise

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self.logger.info("Database connection closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
