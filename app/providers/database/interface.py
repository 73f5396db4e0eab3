"""
Abstract interface for document database providers.

All database adapters must implement this interface to ensure
consistent behavior and easy hot-swapping. The value types in this
module (snapshots, query constraints, field values) are the neutral
vocabulary each adapter translates into its vendor's native form.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from app.exceptions import QueryValidationError

from ..context import ExecutionContext
from .capabilities import DatabaseCapabilities

T = TypeVar("T")


# =============================================================================
# Snapshots
# =============================================================================

@dataclass
class DocumentSnapshot:
    """One record read; ``exists`` is derived so it can never disagree with ``data``."""
    id: str
    data: Optional[dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass
class VectorSearchResult(DocumentSnapshot):
    """Result from a nearest-neighbour search."""
    distance: Optional[float] = None


@dataclass
class QuerySnapshot:
    """Result of a collection query."""
    docs: List[DocumentSnapshot] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.docs)

    @property
    def empty(self) -> bool:
        return self.size == 0

    def __iter__(self):
        return iter(self.docs)


# =============================================================================
# Query Constraints
# =============================================================================

class WhereOp(str, Enum):
    """Comparison / containment operators of the neutral query language."""
    EQ = "=="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"
    IN = "in"
    NOT_IN = "not-in"


class OrderDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ConstraintType(str, Enum):
    WHERE = "where"
    ORDER_BY = "orderBy"
    LIMIT = "limit"
    START_AFTER = "startAfter"
    START_AT = "startAt"


@dataclass(frozen=True)
class QueryConstraint:
    """
    Tagged query constraint.

    Build instances with :func:`where`, :func:`order_by`, :func:`limit`,
    :func:`start_after` and :func:`start_at` rather than directly.
    """
    type: ConstraintType
    field: Optional[str] = None
    op: Optional[WhereOp] = None
    value: Any = None
    direction: OrderDirection = OrderDirection.ASC


def where(field_path: str, op: WhereOp | str, value: Any) -> QueryConstraint:
    try:
        op = WhereOp(op)
    except ValueError as e:
        valid = ", ".join(o.value for o in WhereOp)
        raise QueryValidationError(
            f"Unknown where operator {op!r}. Valid operators: {valid}"
        ) from e
    if op in (WhereOp.IN, WhereOp.NOT_IN, WhereOp.ARRAY_CONTAINS_ANY):
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise QueryValidationError(f"Operator {op.value!r} requires a list value")
        value = list(value)
    return QueryConstraint(ConstraintType.WHERE, field=field_path, op=op, value=value)


def order_by(field_path: str, direction: OrderDirection | str = OrderDirection.ASC) -> QueryConstraint:
    try:
        direction = OrderDirection(direction)
    except ValueError as e:
        raise QueryValidationError(f"Unknown order direction {direction!r}") from e
    return QueryConstraint(ConstraintType.ORDER_BY, field=field_path, direction=direction)


def limit(n: int) -> QueryConstraint:
    if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
        raise QueryValidationError(f"limit must be a positive integer, got {n!r}")
    return QueryConstraint(ConstraintType.LIMIT, value=n)


def start_after(value: Any) -> QueryConstraint:
    """Cursor on the value of the closest preceding ``order_by`` field."""
    return QueryConstraint(ConstraintType.START_AFTER, value=value)


def start_at(value: Any) -> QueryConstraint:
    """Inclusive cursor on the value of the closest preceding ``order_by`` field."""
    return QueryConstraint(ConstraintType.START_AT, value=value)


def pair_cursors(constraints: tuple[QueryConstraint, ...]) -> list[tuple[QueryConstraint, Optional[QueryConstraint]]]:
    """
    Pair each constraint with the closest preceding ``order_by``.

    Cursors without one are rejected, so both adapters agree on what a
    bare cursor means.
    """
    paired: list[tuple[QueryConstraint, Optional[QueryConstraint]]] = []
    last_order: Optional[QueryConstraint] = None
    for constraint in constraints:
        if constraint.type is ConstraintType.ORDER_BY:
            last_order = constraint
        elif constraint.type in (ConstraintType.START_AFTER, ConstraintType.START_AT) and last_order is None:
            raise QueryValidationError(
                f"{constraint.type.value} requires a preceding order_by constraint"
            )
        paired.append((constraint, last_order))
    return paired


# =============================================================================
# Field Values
# =============================================================================

class FieldValueKind(str, Enum):
    SERVER_TIMESTAMP = "serverTimestamp"
    INCREMENT = "increment"
    ARRAY_UNION = "arrayUnion"
    ARRAY_REMOVE = "arrayRemove"
    DELETE = "delete"


@dataclass(frozen=True)
class FieldValue:
    """Marker for a value computed at write time rather than a literal."""
    kind: FieldValueKind
    value: Any = None


# =============================================================================
# Vector Search
# =============================================================================

class DistanceMeasure(str, Enum):
    COSINE = "COSINE"
    EUCLIDEAN = "EUCLIDEAN"
    DOT_PRODUCT = "DOT_PRODUCT"


@dataclass
class VectorSearchOptions:
    limit: int
    distance_measure: DistanceMeasure = DistanceMeasure.COSINE

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise QueryValidationError(f"Vector search limit must be positive, got {self.limit}")
        self.distance_measure = DistanceMeasure(self.distance_measure)


# =============================================================================
# Batches and Transactions
# =============================================================================

class BatchWrite(ABC):
    """Accumulator of pending writes applied by ``commit()``."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass


class Transaction(ABC):
    """Read-then-write unit passed to ``run_transaction`` callbacks."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        pass

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        pass


# =============================================================================
# Database Interface
# =============================================================================

DocumentCallback = Callable[[DocumentSnapshot], None]
QueryCallback = Callable[[QuerySnapshot], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], Awaitable[None]]
TransactionFunction = Callable[[Transaction], Awaitable[T]]


class DatabaseProviderInterface(ABC):
    """
    Abstract interface for document database adapters.

    All implementations must provide:
    - Document and sub-document CRUD with merge/replace semantics
    - Constraint-based queries
    - Live subscriptions (client context only)
    - Batches, transactions and write-time field values
    - Vector similarity search
    - Date conversion to/from the backend's native timestamps
    """

    def __init__(self, context: ExecutionContext) -> None:
        self.context = context

    @property
    @abstractmethod
    def capabilities(self) -> DatabaseCapabilities:
        """Features this adapter supports, checked before every call."""
        pass

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_doc(self, collection: str, doc_id: str) -> DocumentSnapshot:
        pass

    @abstractmethod
    async def get_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> DocumentSnapshot:
        pass

    @abstractmethod
    async def get_docs(self, collection: str, *constraints: QueryConstraint) -> QuerySnapshot:
        pass

    @abstractmethod
    async def get_sub_docs(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        *constraints: QueryConstraint,
    ) -> QuerySnapshot:
        pass

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @abstractmethod
    async def set_doc(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """
        Write a document.

        Args:
            merge: False replaces the document (fields absent from ``data``
                   are removed); True keeps existing fields.
        """
        pass

    @abstractmethod
    async def set_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        pass

    @abstractmethod
    async def update_doc(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Update fields of an existing document."""
        pass

    @abstractmethod
    async def update_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
    ) -> None:
        pass

    @abstractmethod
    async def delete_doc(self, collection: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def delete_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> None:
        pass

    # -------------------------------------------------------------------------
    # Live subscriptions (client context)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def on_snapshot(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """
        Subscribe to one document.

        Returns:
            Coroutine function that cancels the subscription. Callers own
            the teardown; nothing is unsubscribed automatically.
        """
        pass

    @abstractmethod
    async def on_snapshot_query(
        self,
        collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        pass

    @abstractmethod
    async def on_snapshot_sub_collection(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        pass

    # -------------------------------------------------------------------------
    # Batches / transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def batch(self) -> BatchWrite:
        pass

    @abstractmethod
    async def run_transaction(self, update_function: TransactionFunction[T]) -> T:
        pass

    # -------------------------------------------------------------------------
    # Ids and field values
    # -------------------------------------------------------------------------

    @abstractmethod
    def generate_id(self) -> str:
        pass

    def server_timestamp(self) -> FieldValue:
        return FieldValue(FieldValueKind.SERVER_TIMESTAMP)

    def increment(self, n: int | float) -> FieldValue:
        if isinstance(n, bool) or not isinstance(n, (int, float)):
            raise QueryValidationError(f"increment requires a number, got {n!r}")
        return FieldValue(FieldValueKind.INCREMENT, n)

    def array_union(self, *elements: Any) -> FieldValue:
        return FieldValue(FieldValueKind.ARRAY_UNION, tuple(elements))

    def array_remove(self, *elements: Any) -> FieldValue:
        return FieldValue(FieldValueKind.ARRAY_REMOVE, tuple(elements))

    def delete_field(self) -> FieldValue:
        return FieldValue(FieldValueKind.DELETE)

    # -------------------------------------------------------------------------
    # Vector search
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_nearest(
        self,
        collection: str,
        vector_field: str,
        query_vector: List[float],
        options: VectorSearchOptions,
    ) -> List[VectorSearchResult]:
        """
        Search for the documents closest to ``query_vector``.

        Returns:
            Results ordered nearest first, each carrying its distance
        """
        pass

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------

    @abstractmethod
    def to_timestamp(self, value: datetime) -> Any:
        """Convert a datetime to the backend's native timestamp."""
        pass

    @abstractmethod
    def from_timestamp(self, value: Any) -> Optional[datetime]:
        """Convert a native timestamp to an aware datetime (None if not a timestamp)."""
        pass

    @abstractmethod
    def get_db_instance(self) -> Any:
        """Get the underlying vendor client."""
        pass

    def get_provider_name(self) -> str:
        return self.capabilities.provider
