"""ETL module for data extraction, transformation, and loading."""

from app.etl.base import DataProvider

__all__ = [
    "DataProvider",
]
