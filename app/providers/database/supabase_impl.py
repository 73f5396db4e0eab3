"""
Supabase Database Provider implementation.

Translates the neutral document interface onto Postgres tables through
the supabase-py async client (PostgREST):
- One table per collection, primary key column ``id``
- Nested documents as rows linked by a foreign-key column
- Atomic increment / array transforms through a stored procedure
- Realtime ``postgres_changes`` channels for live updates (client context)
- Vector search through per-table stored procedures
"""
from __future__ import annotations

import asyncio
import copy
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterator, List, Mapping, Optional

from postgrest.exceptions import APIError
from realtime.types import RealtimeSubscribeStates

from ...config import get_logger
from ...exceptions import DatabaseError, UnsupportedFeatureError
from ...utils import generate_document_id, to_camel_case, to_snake_case
from ..context import ExecutionContext, require_context
from .capabilities import DatabaseCapabilities, Feature, SubCollectionStrategy
from .conversion import (
    dates_from_native,
    dates_to_native,
    ensure_aware,
    format_iso_timestamp,
    is_iso_timestamp,
    parse_iso_timestamp,
)
from .interface import (
    BatchWrite,
    ConstraintType,
    DatabaseProviderInterface,
    DistanceMeasure,
    DocumentCallback,
    DocumentSnapshot,
    ErrorCallback,
    FieldValue,
    FieldValueKind,
    OrderDirection,
    QueryCallback,
    QueryConstraint,
    QuerySnapshot,
    TransactionFunction,
    Unsubscribe,
    VectorSearchOptions,
    VectorSearchResult,
    WhereOp,
    pair_cursors,
)

logger = get_logger("database.supabase")

PROVIDER_NAME = "supabase"
ID_COLUMN = "id"
SIMILARITY_COLUMN = "similarity"

# Operation names understood by apply_field_transforms (sql/apply_field_transforms.sql)
_TRANSFORM_OPS: dict[FieldValueKind, str] = {
    FieldValueKind.INCREMENT: "increment",
    FieldValueKind.ARRAY_UNION: "array_union",
    FieldValueKind.ARRAY_REMOVE: "array_remove",
}


def singularize(name: str) -> str:
    """
    Naive English singular used for foreign-key column names.

    >>> singularize("categories")
    'category'
    >>> singularize("equipment")
    'equipment'
    >>> singularize("addresses")
    'addresse'
    """
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


@contextmanager
def _postgrest_errors(operation: str, path: str) -> Iterator[None]:
    """Re-raise PostgREST errors as DatabaseError with the operation and path."""
    try:
        yield
    except APIError as e:
        logger.warning("Supabase %s failed | path=%s | code=%s | error=%s", operation, path, e.code, e.message)
        raise DatabaseError(
            f"Supabase {operation} failed for {path}: {e.message}",
            details=e.details or e.hint,
            error_code=e.code or "POSTGREST_ERROR",
        ) from e


class SupabaseBatchWrite(BatchWrite):
    """
    Sequential, NON-atomic batch.

    PostgREST has no multi-statement transaction endpoint, so queued
    writes are applied one after another. A failure stops the batch and
    the error reports how many writes were already applied.
    """

    def __init__(self, adapter: "SupabaseDatabaseProvider") -> None:
        self._adapter = adapter
        self._operations: list[tuple[str, Callable[[], Awaitable[None]]]] = []

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        payload = copy.deepcopy(data)
        self._operations.append(
            (f"set {collection}/{doc_id}", lambda: self._adapter.set_doc(collection, doc_id, payload, merge=merge))
        )

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        payload = copy.deepcopy(data)
        self._operations.append(
            (f"update {collection}/{doc_id}", lambda: self._adapter.update_doc(collection, doc_id, payload))
        )

    def delete(self, collection: str, doc_id: str) -> None:
        self._operations.append(
            (f"delete {collection}/{doc_id}", lambda: self._adapter.delete_doc(collection, doc_id))
        )

    async def commit(self) -> None:
        if len(self._operations) > 1:
            logger.warning(
                "Supabase batch is not atomic | applying %d writes sequentially",
                len(self._operations),
            )
        total = len(self._operations)
        applied = 0
        while self._operations:
            description, operation = self._operations[0]
            try:
                await operation()
            except DatabaseError as e:
                raise DatabaseError(
                    f"Batch stopped at '{description}' after {applied} of {total} writes: {e.message}",
                    details=e.details,
                    error_code=e.error_code,
                ) from e
            # Applied writes leave the queue so a retried commit resumes here
            self._operations.pop(0)
            applied += 1


class SupabaseDatabaseProvider(DatabaseProviderInterface):
    """
    Supabase (Postgres) database adapter.

    Column naming: top-level camelCase keys are stored as snake_case
    columns and converted back on read when ``snake_case_columns`` is on.
    ``NULL`` columns are omitted from returned documents, which is what
    makes ``set_doc(merge=False)`` behave as a replace.
    """

    def __init__(
        self,
        client: Any,
        context: ExecutionContext,
        *,
        foreign_keys: Optional[Mapping[str, str]] = None,
        transform_rpc: Optional[str] = "apply_field_transforms",
        vector_search_rpcs: Optional[Mapping[str, str]] = None,
        snake_case_columns: bool = True,
        table_columns: Optional[Mapping[str, List[str]]] = None,
    ) -> None:
        super().__init__(context)
        self._client = client
        self._foreign_keys = dict(foreign_keys or {})
        self._transform_rpc = transform_rpc
        self._vector_search_rpcs = dict(vector_search_rpcs or {})
        self._snake_case_columns = snake_case_columns
        self._table_columns = {table: set(cols) for table, cols in (table_columns or {}).items()}
        self._tasks: set[asyncio.Task] = set()

        field_values = {FieldValueKind.SERVER_TIMESTAMP, FieldValueKind.DELETE}
        if transform_rpc:
            field_values |= set(_TRANSFORM_OPS)
        features = {Feature.CURSORS, Feature.REALTIME}
        if self._vector_search_rpcs:
            features.add(Feature.VECTOR_SEARCH)
        self._capabilities = DatabaseCapabilities(
            provider=PROVIDER_NAME,
            where_ops=frozenset(WhereOp),
            field_values=frozenset(field_values),
            features=frozenset(features),
            sub_collections=SubCollectionStrategy.FOREIGN_KEY,
        )

    @property
    def capabilities(self) -> DatabaseCapabilities:
        return self._capabilities

    # =========================================================================
    # Naming
    # =========================================================================

    def foreign_key(self, parent_collection: str, sub_collection: str) -> str:
        """
        Column of ``sub_collection`` that references ``parent_collection``.

        Explicit mappings (``"parent/sub"`` then ``"parent"``) win over the
        ``<singular parent>_id`` convention.
        """
        explicit = (
            self._foreign_keys.get(f"{parent_collection}/{sub_collection}")
            or self._foreign_keys.get(parent_collection)
        )
        if explicit:
            return explicit
        column = f"{singularize(parent_collection)}_id"
        logger.debug(
            "Derived foreign key | %s.%s -> %s",
            sub_collection,
            column,
            parent_collection,
        )
        return column

    def _column(self, key: str) -> str:
        return to_snake_case(key) if self._snake_case_columns else key

    def _key(self, column: str) -> str:
        return to_camel_case(column) if self._snake_case_columns else column

    # =========================================================================
    # Encoding / Decoding
    # =========================================================================

    def _encode_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return self.to_timestamp(value)
        if isinstance(value, (dict, list, tuple)):
            if _contains_field_value(value):
                raise UnsupportedFeatureError(
                    "FieldValue inside nested objects",
                    PROVIDER_NAME,
                    details="Field values are only supported on top-level columns",
                )
            return dates_to_native(value, self.to_timestamp)
        return value

    def _prepare(self, collection: str, data: Mapping[str, Any]) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        """Split a payload into plain column values and atomic transforms."""
        row: dict[str, Any] = {}
        transforms: list[dict[str, Any]] = []
        for key, value in data.items():
            column = self._column(key)
            if isinstance(value, FieldValue):
                self.capabilities.check_field_value(
                    value.kind,
                    details=None if self._transform_rpc else "SUPABASE_FIELD_TRANSFORM_RPC is not configured",
                )
                if value.kind is FieldValueKind.SERVER_TIMESTAMP:
                    # Client clock: PostgREST cannot express now() in a payload
                    row[column] = self.to_timestamp(datetime.now(timezone.utc))
                elif value.kind is FieldValueKind.DELETE:
                    row[column] = None
                else:
                    operand = value.value
                    if value.kind is not FieldValueKind.INCREMENT:
                        operand = self._encode_value(list(operand))
                    transforms.append({"column": column, "op": _TRANSFORM_OPS[value.kind], "value": operand})
            else:
                row[column] = self._encode_value(value)
        return self._filter_columns(collection, row), transforms

    def _filter_columns(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        allowed = self._table_columns.get(collection)
        if not allowed:
            return row
        dropped = sorted(set(row) - allowed)
        if dropped:
            logger.warning("Dropping unknown columns for %s: %s", collection, ", ".join(dropped))
        return {k: v for k, v in row.items() if k in allowed}

    def _decode_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        data = {
            self._key(column): value
            for column, value in row.items()
            if column != ID_COLUMN and value is not None
        }
        return dates_from_native(data, self.from_timestamp, is_iso_timestamp)

    def _to_snapshot(self, row: Mapping[str, Any]) -> DocumentSnapshot:
        return DocumentSnapshot(id=str(row[ID_COLUMN]), data=self._decode_row(row))

    # =========================================================================
    # Query Translation
    # =========================================================================

    def _apply_constraints(self, builder: Any, constraints: tuple[QueryConstraint, ...]) -> Any:
        self.capabilities.check_query(constraints)
        for constraint, order in pair_cursors(constraints):
            if constraint.type is ConstraintType.WHERE:
                builder = self._apply_where(builder, constraint)
            elif constraint.type is ConstraintType.ORDER_BY:
                builder = builder.order(
                    self._column(constraint.field),
                    desc=constraint.direction is OrderDirection.DESC,
                )
            elif constraint.type is ConstraintType.LIMIT:
                builder = builder.limit(constraint.value)
            else:
                column = self._column(order.field)
                value = self._encode_value(constraint.value)
                descending = order.direction is OrderDirection.DESC
                if constraint.type is ConstraintType.START_AFTER:
                    builder = builder.lt(column, value) if descending else builder.gt(column, value)
                else:
                    builder = builder.lte(column, value) if descending else builder.gte(column, value)
        return builder

    def _apply_where(self, builder: Any, constraint: QueryConstraint) -> Any:
        column = self._column(constraint.field)
        value = self._encode_value(constraint.value)
        op = constraint.op
        if op is WhereOp.EQ:
            return builder.is_(column, "null") if value is None else builder.eq(column, value)
        if op is WhereOp.NE:
            return builder.not_.is_(column, "null") if value is None else builder.neq(column, value)
        if op is WhereOp.LT:
            return builder.lt(column, value)
        if op is WhereOp.LTE:
            return builder.lte(column, value)
        if op is WhereOp.GT:
            return builder.gt(column, value)
        if op is WhereOp.GTE:
            return builder.gte(column, value)
        if op is WhereOp.ARRAY_CONTAINS:
            return builder.contains(column, [value])
        if op is WhereOp.ARRAY_CONTAINS_ANY:
            return builder.overlaps(column, value)
        if op is WhereOp.IN:
            return builder.in_(column, value)
        return builder.not_.in_(column, value)

    # =========================================================================
    # Row Access
    # =========================================================================

    async def _fetch_row(self, table: str, doc_id: str, filters: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        builder = self._client.table(table).select("*").eq(ID_COLUMN, doc_id)
        for column, value in filters.items():
            builder = builder.eq(column, value)
        response = await builder.limit(1).execute()
        return response.data[0] if response.data else None

    async def _read(self, table: str, doc_id: str, filters: Mapping[str, Any], operation: str) -> DocumentSnapshot:
        with _postgrest_errors(operation, f"{table}/{doc_id}"):
            row = await self._fetch_row(table, doc_id, filters)
        if row is None:
            return DocumentSnapshot(id=doc_id)
        return self._to_snapshot(row)

    async def _query(self, table: str, filters: Mapping[str, Any],
                     constraints: tuple[QueryConstraint, ...], operation: str) -> QuerySnapshot:
        builder = self._client.table(table).select("*")
        for column, value in filters.items():
            builder = builder.eq(column, value)
        builder = self._apply_constraints(builder, constraints)
        with _postgrest_errors(operation, table):
            response = await builder.execute()
        return QuerySnapshot(docs=[self._to_snapshot(row) for row in response.data or []])

    async def _write(self, table: str, doc_id: str, data: Mapping[str, Any], merge: bool,
                     filters: Mapping[str, Any], operation: str) -> None:
        row, transforms = self._prepare(table, data)
        row.update(filters)
        row[ID_COLUMN] = doc_id
        path = f"{table}/{doc_id}"
        with _postgrest_errors(operation, path):
            if not merge:
                existing = await self._fetch_row(table, doc_id, {})
                if existing:
                    # Transformed columns are cleared as well, a replace starts them empty
                    for column in existing:
                        if column not in row:
                            row[column] = None
            await self._client.table(table).upsert(row, on_conflict=ID_COLUMN).execute()
            if transforms:
                await self._apply_transforms(table, doc_id, transforms)

    async def _update(self, table: str, doc_id: str, data: Mapping[str, Any],
                      filters: Mapping[str, Any], operation: str) -> None:
        row, transforms = self._prepare(table, data)
        path = f"{table}/{doc_id}"
        with _postgrest_errors(operation, path):
            if row:
                builder = self._client.table(table).update(row).eq(ID_COLUMN, doc_id)
                for column, value in filters.items():
                    builder = builder.eq(column, value)
                response = await builder.execute()
                found = bool(response.data)
            else:
                found = await self._fetch_row(table, doc_id, filters) is not None
            if not found:
                raise DatabaseError(
                    f"Supabase {operation} failed for {path}: no document to update",
                    error_code="NOT_FOUND",
                )
            if transforms:
                await self._apply_transforms(table, doc_id, transforms)

    async def _apply_transforms(self, table: str, doc_id: str, transforms: list[dict[str, Any]]) -> None:
        await self._client.rpc(
            self._transform_rpc,
            {
                "p_table": table,
                "p_id_column": ID_COLUMN,
                "p_id": doc_id,
                "p_transforms": transforms,
            },
        ).execute()
        logger.debug("Applied %d field transforms | %s/%s", len(transforms), table, doc_id)

    async def _delete(self, table: str, doc_id: str, filters: Mapping[str, Any], operation: str) -> None:
        builder = self._client.table(table).delete().eq(ID_COLUMN, doc_id)
        for column, value in filters.items():
            builder = builder.eq(column, value)
        with _postgrest_errors(operation, f"{table}/{doc_id}"):
            await builder.execute()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_doc(self, collection: str, doc_id: str) -> DocumentSnapshot:
        return await self._read(collection, doc_id, {}, "get_doc")

    async def get_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> DocumentSnapshot:
        fk = self.foreign_key(parent_collection, sub_collection)
        return await self._read(sub_collection, sub_doc_id, {fk: parent_doc_id}, "get_sub_doc")

    async def get_docs(self, collection: str, *constraints: QueryConstraint) -> QuerySnapshot:
        return await self._query(collection, {}, constraints, "get_docs")

    async def get_sub_docs(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        *constraints: QueryConstraint,
    ) -> QuerySnapshot:
        fk = self.foreign_key(parent_collection, sub_collection)
        return await self._query(sub_collection, {fk: parent_doc_id}, constraints, "get_sub_docs")

    # =========================================================================
    # Writes
    # =========================================================================

    async def set_doc(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        await self._write(collection, doc_id, data, merge, {}, "set_doc")

    async def set_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        fk = self.foreign_key(parent_collection, sub_collection)
        await self._write(sub_collection, sub_doc_id, data, merge, {fk: parent_doc_id}, "set_sub_doc")

    async def update_doc(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._update(collection, doc_id, data, {}, "update_doc")

    async def update_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
    ) -> None:
        fk = self.foreign_key(parent_collection, sub_collection)
        await self._update(sub_collection, sub_doc_id, data, {fk: parent_doc_id}, "update_sub_doc")

    async def delete_doc(self, collection: str, doc_id: str) -> None:
        await self._delete(collection, doc_id, {}, "delete_doc")

    async def delete_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> None:
        fk = self.foreign_key(parent_collection, sub_collection)
        await self._delete(sub_collection, sub_doc_id, {fk: parent_doc_id}, "delete_sub_doc")

    # =========================================================================
    # Live Subscriptions
    # =========================================================================

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _subscribe(
        self,
        operation: str,
        table: str,
        row_filter: Optional[str],
        refresh: Callable[[], Awaitable[Any]],
        callback: Callable[[Any], None],
        on_error: Optional[ErrorCallback],
    ) -> Unsubscribe:
        require_context(self.context, ExecutionContext.CLIENT, operation)
        self.capabilities.require(Feature.REALTIME)

        async def deliver() -> None:
            try:
                callback(await refresh())
            except Exception as exc:
                if on_error is None:
                    logger.error("Unhandled error in %s callback: %s", operation, exc, exc_info=True)
                    return
                on_error(exc)

        def on_change(payload: Any) -> None:
            self._spawn(deliver())

        def on_state(state: RealtimeSubscribeStates, error: Optional[Exception]) -> None:
            if state in (RealtimeSubscribeStates.CHANNEL_ERROR, RealtimeSubscribeStates.TIMED_OUT):
                logger.warning("Realtime channel %s for %s | %s", state.value, table, error)
                if on_error is not None:
                    on_error(error or DatabaseError(f"Realtime channel {state.value} for {table}"))

        channel = self._client.channel(f"{table}:{generate_document_id(8)}")
        channel.on_postgres_changes("*", on_change, table=table, schema="public", filter=row_filter)
        await channel.subscribe(on_state)
        await deliver()

        async def unsubscribe() -> None:
            await self._client.remove_channel(channel)
            logger.debug("Realtime channel removed | %s", table)

        return unsubscribe

    async def on_snapshot(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        return await self._subscribe(
            "on_snapshot",
            collection,
            f"{ID_COLUMN}=eq.{doc_id}",
            lambda: self.get_doc(collection, doc_id),
            callback,
            on_error,
        )

    async def on_snapshot_query(
        self,
        collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        return await self._subscribe(
            "on_snapshot_query",
            collection,
            None,
            lambda: self.get_docs(collection, *constraints),
            callback,
            on_error,
        )

    async def on_snapshot_sub_collection(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        fk = self.foreign_key(parent_collection, sub_collection)
        return await self._subscribe(
            "on_snapshot_sub_collection",
            sub_collection,
            f"{fk}=eq.{parent_doc_id}",
            lambda: self.get_sub_docs(parent_collection, parent_doc_id, sub_collection, *constraints),
            callback,
            on_error,
        )

    # =========================================================================
    # Batches / Transactions
    # =========================================================================

    def batch(self) -> BatchWrite:
        return SupabaseBatchWrite(self)

    async def run_transaction(self, update_function: TransactionFunction) -> Any:
        self.capabilities.require(
            Feature.TRANSACTIONS,
            details="Move multi-row read-then-write logic into a Postgres function and call it via rpc",
        )

    def generate_id(self) -> str:
        return str(uuid.uuid4())

    # =========================================================================
    # Vector Search
    # =========================================================================

    async def find_nearest(
        self,
        collection: str,
        vector_field: str,
        query_vector: List[float],
        options: VectorSearchOptions,
    ) -> List[VectorSearchResult]:
        rpc = self._vector_search_rpcs.get(collection)
        if not rpc:
            raise UnsupportedFeatureError(
                f"vector search on {collection!r}",
                PROVIDER_NAME,
                details="Add the table to SUPABASE_VECTOR_SEARCH_RPCS",
            )
        if options.distance_measure is not DistanceMeasure.COSINE:
            raise UnsupportedFeatureError(
                f"{options.distance_measure.value} distance",
                PROVIDER_NAME,
                details="Search procedures rank by cosine similarity",
            )
        logger.debug("Vector search | table=%s | field=%s | rpc=%s", collection, vector_field, rpc)

        with _postgrest_errors("find_nearest", collection):
            response = await self._client.rpc(
                rpc,
                {
                    "query_embedding": list(query_vector),
                    "match_threshold": 0.0,
                    "match_count": options.limit,
                },
            ).execute()

        results: List[VectorSearchResult] = []
        for row in response.data or []:
            similarity = row.get(SIMILARITY_COLUMN) or 0.0
            data = self._decode_row({k: v for k, v in row.items() if k != SIMILARITY_COLUMN})
            results.append(VectorSearchResult(id=str(row[ID_COLUMN]), data=data, distance=1.0 - similarity))
        return results

    # =========================================================================
    # Timestamps
    # =========================================================================

    def to_timestamp(self, value: datetime) -> str:
        return format_iso_timestamp(value)

    def from_timestamp(self, value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return ensure_aware(value)
        if isinstance(value, str):
            try:
                return parse_iso_timestamp(value)
            except ValueError:
                return None
        return None

    def get_db_instance(self) -> Any:
        return self._client


def _contains_field_value(value: Any) -> bool:
    if isinstance(value, FieldValue):
        return True
    if isinstance(value, dict):
        return any(_contains_field_value(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_field_value(v) for v in value)
    return False
