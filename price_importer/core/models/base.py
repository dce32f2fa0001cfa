"""Shared MetaData factory with consistent constraint naming conventions.

Table names carry a deployment prefix, so the warehouse and job-metadata
tables are built per prefix on a fresh MetaData rather than declared once
at import time.
"""

from sqlalchemy import MetaData

# Naming conventions for constraints created by prepare_database
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def make_metadata() -> MetaData:
    """Return an empty MetaData carrying the project naming convention."""
    return MetaData(naming_convention=convention)
