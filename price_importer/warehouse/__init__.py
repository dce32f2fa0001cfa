"""Record-import core: sequences, dimensions, facts and the composite importer.

Usage::

    from price_importer.warehouse import RecordImporter
    importer = RecordImporter.from_settings(settings, session_factory, schema)
    fact_id = importer.import_record(record)
"""

from .dimensions import Dimension, DimensionResolver, Dimensions, build_dimensions
from .facts import FactUpserter
from .importer import RecordImporter, validate_record
from .sequence import (
    CounterTableSequenceAllocator,
    H2SequenceAllocator,
    HanaSequenceAllocator,
    SequenceAllocator,
    StandardSequenceAllocator,
    create_allocator,
)

__all__ = [
    "SequenceAllocator",
    "StandardSequenceAllocator",
    "HanaSequenceAllocator",
    "H2SequenceAllocator",
    "CounterTableSequenceAllocator",
    "create_allocator",
    "Dimension",
    "Dimensions",
    "DimensionResolver",
    "build_dimensions",
    "FactUpserter",
    "RecordImporter",
    "validate_record",
]
