"""
Data access for firm reference data.
"""

from .firm_database import FirmDatabase, FirmDataSource, TABLE_COLUMNS


__all__ = [
    'FirmDatabase',
    'FirmDataSource',
    'TABLE_COLUMNS',
]
