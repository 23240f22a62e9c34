"""
SQLite store for prop-firm reference data (plans, rules, payouts, FAQs...).

Rows come back tagged with their table so the context filter never has to
guess where a row came from.
"""

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

import yaml

from ..context_filter import SourceRow
from ..errors import DataSourceError
from ..logger import get_logger, log_timing

logger = get_logger(__name__)


TABLE_COLUMNS: Dict[str, Dict[str, str]] = {
    'account_plans': {
        'name': 'TEXT', 'display_name': 'TEXT', 'account_size': 'INTEGER',
        'evaluation_fee': 'REAL', 'activation_fee': 'REAL', 'price_total': 'REAL',
        'price_monthly': 'REAL', 'max_contracts': 'INTEGER', 'profit_target': 'REAL',
        'drawdown_type': 'TEXT', 'drawdown_max': 'REAL', 'trailing_threshold': 'REAL',
        'phase': 'TEXT',
    },
    'trading_rules': {
        'rule_name': 'TEXT', 'max_drawdown': 'REAL', 'daily_drawdown': 'REAL',
        'trailing_drawdown': 'INTEGER', 'drawdown_type': 'TEXT',
        'balance_based_drawdown': 'INTEGER', 'can_trade_news': 'INTEGER',
        'can_hold_overnight': 'INTEGER', 'can_trade_weekends': 'INTEGER',
        'minimum_days': 'INTEGER', 'consistency_rule': 'TEXT',
        'value_text': 'TEXT', 'value_numeric': 'REAL', 'phase': 'TEXT',
    },
    'payout_policies': {
        'policy_name': 'TEXT', 'description': 'TEXT', 'profit_split_phase1': 'REAL',
        'profit_split_phase2': 'REAL', 'profit_split_percentage': 'REAL',
        'minimum_payout': 'REAL', 'payout_frequency': 'TEXT', 'payout_methods': 'TEXT',
    },
    'faqs': {
        'question': 'TEXT', 'answer': 'TEXT', 'answer_md': 'TEXT', 'slug': 'TEXT',
    },
    'platforms': {
        'name': 'TEXT', 'type': 'TEXT', 'platform_type': 'TEXT', 'supported_markets': 'TEXT',
    },
    'discounts': {
        'code': 'TEXT', 'percentage': 'REAL', 'description': 'TEXT', 'requirements': 'TEXT',
    },
}


class FirmDataSource(Protocol):
    """Anything that can hand the pipeline the rows for a firm."""

    async def fetch_rows(self, firm: Optional[str]) -> List[SourceRow]:
        ...


class FirmDatabase:
    """
    SQLite database with firm reference data.

    Usage:
        db = FirmDatabase("data/propfirms.db")
        db.init_schema()
        db.insert_rows("faqs", [{"firm_slug": "apex", "question": "...", "answer": "..."}])

        rows = await db.fetch_rows("apex")
    """

    def __init__(self, db_path: str = "data/propfirms.db"):
        """Open (or create) the SQLite file at db_path."""
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_connection()

    def _init_connection(self):
        """Open the connection; queries run in worker threads so it is shared."""
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=30
        )
        self.conn.row_factory = sqlite3.Row

    @contextmanager
    def get_cursor(self):
        """Serialized cursor; commits on success, rolls back and re-raises on error."""
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Database error: {e}")
                raise
            finally:
                cursor.close()

    def init_schema(self):
        """Create the data tables if they don't exist."""
        with self.get_cursor() as cursor:
            for table, columns in TABLE_COLUMNS.items():
                column_sql = ",\n".join(f"{name} {sql_type}" for name, sql_type in columns.items())
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        firm_slug TEXT,
                        {column_sql}
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_firm_slug
                    ON {table}(firm_slug)
                """)

        logger.info(f"Firm database schema initialized at {self.db_path}")

    def insert_rows(self, table: str, rows: Iterable[Dict[str, Any]]) -> int:
        """
        Insert rows into a data table.

        Args:
            table: one of TABLE_COLUMNS
            rows: dicts with firm_slug plus any of the table's columns

        Returns:
            number of inserted rows
        """
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")

        allowed = set(TABLE_COLUMNS[table]) | {'firm_slug'}
        count = 0

        with self.get_cursor() as cursor:
            for row in rows:
                unknown = set(row) - allowed
                if unknown:
                    raise ValueError(f"Unknown columns for {table}: {sorted(unknown)}")

                columns = list(row)
                placeholders = ", ".join("?" for _ in columns)
                cursor.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                    [row[c] for c in columns],
                )
                count += 1

        return count

    def load_yaml(self, path: str) -> int:
        """
        Load seed data from a YAML file shaped as {table: [row, ...]}.

        Returns:
            total inserted rows
        """
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        total = 0
        with log_timing(logger, f"Loading firm data from {path}"):
            for table, rows in data.items():
                total += self.insert_rows(table, rows or [])

        logger.info(f"Loaded {total} rows from {path}")
        return total

    def is_empty(self) -> bool:
        """True when no data table has any row."""
        with self.get_cursor() as cursor:
            for table in TABLE_COLUMNS:
                cursor.execute(f"SELECT 1 FROM {table} LIMIT 1")
                if cursor.fetchone() is not None:
                    return False
        return True

    def fetch_rows_sync(self, firm: Optional[str] = None) -> List[SourceRow]:
        """
        All rows for a firm plus rows shared by every firm (NULL firm_slug).

        firm=None returns every row.
        """
        rows: List[SourceRow] = []

        try:
            with self.get_cursor() as cursor:
                for table in TABLE_COLUMNS:
                    if firm:
                        cursor.execute(
                            f"SELECT * FROM {table} WHERE firm_slug = ? OR firm_slug IS NULL ORDER BY id",
                            (firm,),
                        )
                    else:
                        cursor.execute(f"SELECT * FROM {table} ORDER BY id")

                    for record in cursor.fetchall():
                        fields = {
                            k: record[k] for k in record.keys()
                            if k != 'firm_slug' and record[k] is not None
                        }
                        rows.append(SourceRow(table=table, fields=fields))
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to fetch rows for {firm or 'all firms'}: {e}") from e

        return rows

    async def fetch_rows(self, firm: Optional[str] = None) -> List[SourceRow]:
        """Async wrapper so the event loop keeps serving other chats."""
        return await asyncio.to_thread(self.fetch_rows_sync, firm)

    def close(self):
        """Release the SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
