"""Table definitions and record types for the Price Importer.

Re-exports:
  - make_metadata: MetaData factory with naming conventions
  - WarehouseSchema / build_warehouse_schema: region, period, date_time,
    f_energy_price_demand (+ optional sequence counter table)
  - JobMetadataSchema / build_job_metadata_schema: job_instance,
    job_execution, job_execution_params, step_checkpoint
  - CompositeRecord, DateTimeKey, FactData: plain dataclasses
"""

from .base import make_metadata
from .job_metadata import JobMetadataSchema, build_job_metadata_schema
from .records import CompositeRecord, DateTimeKey, FactData
from .warehouse import LABEL_MAX_LENGTH, WarehouseSchema, build_warehouse_schema

__all__ = [
    "make_metadata",
    "WarehouseSchema",
    "build_warehouse_schema",
    "LABEL_MAX_LENGTH",
    "JobMetadataSchema",
    "build_job_metadata_schema",
    "CompositeRecord",
    "DateTimeKey",
    "FactData",
]
