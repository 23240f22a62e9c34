"""
Tests for the SQLite firm data store.
"""

import asyncio

import pytest

from propbot.context_filter import SourceRow
from propbot.data import FirmDatabase, TABLE_COLUMNS
from propbot.errors import DataSourceError


class TestFirmDatabase:
    """Test suite for FirmDatabase."""

    @pytest.fixture
    def db(self, tmp_path):
        """Create an initialized database in a temp dir."""
        database = FirmDatabase(str(tmp_path / "firms.db"))
        database.init_schema()
        yield database
        database.close()

    @pytest.fixture
    def populated_db(self, db):
        db.insert_rows('account_plans', [
            {'firm_slug': 'apex', 'name': '25K Full', 'account_size': 25000, 'evaluation_fee': 159},
            {'firm_slug': 'bulenox', 'name': '25K EOD', 'account_size': 25000, 'evaluation_fee': 125},
        ])
        db.insert_rows('faqs', [
            {'firm_slug': 'apex', 'question': '¿Precio?', 'answer': '159 USD'},
            {'question': '¿Qué es una prop firm?', 'answer': 'Una empresa que da capital'},
        ])
        return db

    def test_schema_is_idempotent(self, db):
        db.init_schema()

        assert db.is_empty()

    def test_fetch_firm_rows_include_shared(self, populated_db):
        """Test that a firm gets its own rows plus rows without a firm."""
        rows = populated_db.fetch_rows_sync('apex')

        tables = [row.table for row in rows]
        assert tables == ['account_plans', 'faqs', 'faqs']
        assert all(isinstance(row, SourceRow) for row in rows)
        assert rows[0].fields['name'] == '25K Full'

    def test_fetch_all_firms(self, populated_db):
        rows = populated_db.fetch_rows_sync(None)

        assert len(rows) == 4

    def test_rows_are_clean(self, populated_db):
        """Test that firm_slug and NULL columns are not handed to the filter."""
        row = populated_db.fetch_rows_sync('bulenox')[0]

        assert 'firm_slug' not in row.fields
        assert 'activation_fee' not in row.fields
        assert row.fields['id'] == 2

    def test_async_fetch(self, populated_db):
        rows = asyncio.run(populated_db.fetch_rows('bulenox'))

        assert [row.table for row in rows] == ['account_plans', 'faqs']

    def test_unknown_table(self, db):
        with pytest.raises(ValueError):
            db.insert_rows('prop_firms', [{'name': 'Apex'}])

    def test_unknown_column(self, db):
        with pytest.raises(ValueError):
            db.insert_rows('faqs', [{'question': 'q', 'color': 'red'}])

        assert db.is_empty()

    def test_sqlite_errors_become_data_source_errors(self, populated_db):
        populated_db.conn.execute("DROP TABLE faqs")

        with pytest.raises(DataSourceError):
            populated_db.fetch_rows_sync('apex')

    def test_load_yaml(self, db, tmp_path):
        seed = tmp_path / "seed.yaml"
        seed.write_text(
            "account_plans:\n"
            "  - {firm_slug: apex, name: 50K Full, account_size: 50000, evaluation_fee: 199}\n"
            "discounts:\n"
            "  - {firm_slug: apex, code: SAVENOW, percentage: 80}\n"
            "platforms: []\n",
            encoding='utf-8',
        )

        assert db.load_yaml(str(seed)) == 2
        assert not db.is_empty()
        assert {row.table for row in db.fetch_rows_sync('apex')} == {'account_plans', 'discounts'}

    def test_bundled_seed_file_loads(self, db):
        """Test that the shipped data file only uses known tables and columns."""
        from propbot.config import DATA_DIR

        inserted = db.load_yaml(str(DATA_DIR / "firm_data.yaml"))

        assert inserted > 0
        assert {row.table for row in db.fetch_rows_sync('apex')} == set(TABLE_COLUMNS)

    def test_in_memory_database(self):
        db = FirmDatabase(":memory:")
        db.init_schema()
        db.insert_rows('platforms', [{'firm_slug': 'apex', 'name': 'Tradovate', 'platform_type': 'futures'}])

        rows = db.fetch_rows_sync('apex')

        assert rows[0].table == 'platforms'
        db.close()
