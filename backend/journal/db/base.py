"""
SQLAlchemy Base Model Configuration
TradeJournal cTrader Sync
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Models use portable column types (string UUID keys, floats, timezone-aware
    datetimes) so the same metadata runs on PostgreSQL and on SQLite in tests.
    """

    metadata = metadata
