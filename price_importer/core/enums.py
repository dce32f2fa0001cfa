"""Shared enumerations used across the importer and the batch driver.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class BackendDialect(str, Enum):
    """How the surrogate-key allocator reaches the database sequences."""

    STANDARD = "standard"  # nextval(name), PostgreSQL
    HANA = "hana"  # <seq>.NEXTVAL FROM DUMMY
    H2 = "h2"  # NEXT VALUE FOR <seq>
    COUNTER_TABLE = "counter_table"  # emulated via <prefix>_sequence


class BatchStatus(str, Enum):
    """Lifecycle of a job execution.

    CREATED -> STARTED -> (COMPLETED | FAILED | STOPPED)
    """

    CREATED = "CREATED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_running(self) -> bool:
        return self in (BatchStatus.CREATED, BatchStatus.STARTED)

    @property
    def is_restartable(self) -> bool:
        return self in (BatchStatus.FAILED, BatchStatus.STOPPED)
