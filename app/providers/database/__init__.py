"""
Database Providers - document store abstraction.

Concrete adapters are imported lazily by the backend providers so the
Supabase stack does not require the Google Cloud packages and vice versa.

    database/
    ├── interface.py       # DatabaseProviderInterface + value types
    ├── capabilities.py    # Per-adapter feature declaration
    ├── conversion.py      # Recursive date conversion helpers
    ├── firestore_impl.py  # Cloud Firestore
    └── supabase_impl.py   # Supabase / PostgREST
"""

from .capabilities import DatabaseCapabilities, Feature, SubCollectionStrategy
from .interface import (
    BatchWrite,
    DatabaseProviderInterface,
    DistanceMeasure,
    DocumentSnapshot,
    FieldValue,
    FieldValueKind,
    OrderDirection,
    QueryConstraint,
    QuerySnapshot,
    Transaction,
    VectorSearchOptions,
    VectorSearchResult,
    WhereOp,
    limit,
    order_by,
    start_after,
    start_at,
    where,
)

__all__ = [
    "BatchWrite",
    "DatabaseCapabilities",
    "DatabaseProviderInterface",
    "DistanceMeasure",
    "DocumentSnapshot",
    "Feature",
    "FieldValue",
    "FieldValueKind",
    "OrderDirection",
    "QueryConstraint",
    "QuerySnapshot",
    "SubCollectionStrategy",
    "Transaction",
    "VectorSearchOptions",
    "VectorSearchResult",
    "WhereOp",
    "limit",
    "order_by",
    "start_after",
    "start_at",
    "where",
]
