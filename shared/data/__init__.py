"""
Shared data infrastructure.

Contains:
- base.py: DataSource base class, local table sources, table I/O
- schema.py: Table schemas validated at load time
- data_pipeline.py: Pipeline orchestration and data quality reports
"""

from shared.data.base import (
    DataSource,
    DataSourceMetadata,
    LocalTableSource,
    read_table,
    write_table,
)
from shared.data.schema import ColumnSpec, SchemaError, TableSchema
from shared.data.data_pipeline import DataQualityReport, SharedDataPipeline

__all__ = [
    # Base classes
    "DataSource",
    "DataSourceMetadata",
    "LocalTableSource",
    "read_table",
    "write_table",
    # Schemas
    "ColumnSpec",
    "SchemaError",
    "TableSchema",
    # Pipeline
    "DataQualityReport",
    "SharedDataPipeline",
]
