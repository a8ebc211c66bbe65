# src/tracesmith/store/schema.py
"""SQLAlchemy table definitions for tracesmith.

Uses SQLAlchemy Core (not ORM). Domain records are stored whole as
canonical JSON next to their SHA-256 hash; the other columns exist for
lookup and ordering only.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

# === Traces (written by ingestion, read by mining) ===

traces_table = Table(
    "traces",
    metadata,
    Column("trace_id", String(64), primary_key=True),
    Column("fingerprint", String(64), nullable=False),
    Column("success", Boolean, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("trace_json", Text, nullable=False),
    Column("trace_hash", String(64), nullable=False),
    Column("canonical_version", String(64), nullable=False),
)

Index("ix_traces_fingerprint_success_timestamp", traces_table.c.fingerprint, traces_table.c.success, traces_table.c.timestamp)

# === Mined patterns ===

patterns_table = Table(
    "patterns",
    metadata,
    Column("pattern_id", String(64), primary_key=True),
    Column("fingerprint", String(64), nullable=False, index=True),
    Column("confidence", Float, nullable=False),
    Column("mined_at", DateTime(timezone=True), nullable=False),
    Column("pattern_json", Text, nullable=False),
    Column("pattern_hash", String(64), nullable=False),
    Column("canonical_version", String(64), nullable=False),
)

# === Synthesized workflows ===

workflows_table = Table(
    "workflows",
    metadata,
    Column("workflow_id", String(64), primary_key=True),
    Column("fingerprint", String(64), nullable=False, index=True),
    Column("pattern_id", String(64), ForeignKey("patterns.pattern_id"), nullable=False),
    Column("confidence", Float, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("workflow_json", Text, nullable=False),
    Column("workflow_hash", String(64), nullable=False),
    Column("canonical_version", String(64), nullable=False),
)

# === Router arm statistics ===

routing_stats_table = Table(
    "routing_stats",
    metadata,
    Column("query_pattern", String(512), primary_key=True),
    # Optimistic concurrency token; writers compare-and-set on it
    Column("version", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("stats_json", Text, nullable=False),
)
