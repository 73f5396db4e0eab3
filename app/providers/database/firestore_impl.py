"""
Firestore Database Provider implementation.

Translates the neutral database interface onto Google Cloud Firestore:
- Native sub-collections, batches, transactions and field transforms
- FieldFilter-based queries with order_by cursors
- Snapshot listeners for live updates (client context)
- find_nearest vector search
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional

from google.api_core.datetime_helpers import DatetimeWithNanoseconds
from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.base_vector_query import DistanceMeasure as FirestoreDistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from ...config import get_logger
from ...exceptions import DatabaseError
from ...utils import generate_document_id
from ..context import ExecutionContext, require_context
from .capabilities import DatabaseCapabilities, Feature, SubCollectionStrategy
from .conversion import dates_from_native, dates_to_native, ensure_aware
from .interface import (
    BatchWrite,
    ConstraintType,
    DatabaseProviderInterface,
    DocumentCallback,
    DocumentSnapshot,
    ErrorCallback,
    FieldValue,
    FieldValueKind,
    OrderDirection,
    QueryCallback,
    QueryConstraint,
    QuerySnapshot,
    Transaction,
    TransactionFunction,
    Unsubscribe,
    VectorSearchOptions,
    VectorSearchResult,
    WhereOp,
    pair_cursors,
)

logger = get_logger("database.firestore")

DISTANCE_RESULT_FIELD = "vector_distance"

_OPERATORS: dict[WhereOp, str] = {
    WhereOp.EQ: "==",
    WhereOp.NE: "!=",
    WhereOp.LT: "<",
    WhereOp.LTE: "<=",
    WhereOp.GT: ">",
    WhereOp.GTE: ">=",
    WhereOp.ARRAY_CONTAINS: "array_contains",
    WhereOp.ARRAY_CONTAINS_ANY: "array_contains_any",
    WhereOp.IN: "in",
    WhereOp.NOT_IN: "not-in",
}

FIRESTORE_CAPABILITIES = DatabaseCapabilities(
    provider="firebase",
    where_ops=frozenset(_OPERATORS),
    field_values=frozenset(FieldValueKind),
    features=frozenset(Feature),
    sub_collections=SubCollectionStrategy.NATIVE,
)


@contextmanager
def _firestore_errors(operation: str, path: str) -> Iterator[None]:
    """Re-raise Firestore API errors as DatabaseError with the operation and path."""
    try:
        yield
    except GoogleAPICallError as e:
        logger.warning("Firestore %s failed | path=%s | error=%s", operation, path, e)
        raise DatabaseError(
            f"Firestore {operation} failed for {path}: {e.message}",
            details=str(e),
            error_code=type(e).__name__.upper(),
        ) from e


class FirestoreBatchWrite(BatchWrite):
    """Atomic Firestore write batch."""

    def __init__(self, adapter: "FirestoreDatabaseProvider") -> None:
        self._adapter = adapter
        self._batch = adapter._client.batch()
        self._size = 0

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._batch.set(self._adapter._doc_ref(collection, doc_id), self._adapter._encode(data), merge=merge)
        self._size += 1

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._batch.update(self._adapter._doc_ref(collection, doc_id), self._adapter._encode(data))
        self._size += 1

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._adapter._doc_ref(collection, doc_id))
        self._size += 1

    async def commit(self) -> None:
        with _firestore_errors("batch commit", f"<{self._size} writes>"):
            await self._batch.commit()
        logger.debug("Firestore batch committed | writes=%d", self._size)


class FirestoreTransaction(Transaction):
    """Wraps a Firestore transaction; reads must happen before writes."""

    def __init__(self, adapter: "FirestoreDatabaseProvider", transaction: Any) -> None:
        self._adapter = adapter
        self._transaction = transaction

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        ref = self._adapter._doc_ref(collection, doc_id)
        snapshot = await ref.get(transaction=self._transaction)
        return self._adapter._to_snapshot(snapshot)

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._transaction.set(self._adapter._doc_ref(collection, doc_id), self._adapter._encode(data), merge=merge)

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._transaction.update(self._adapter._doc_ref(collection, doc_id), self._adapter._encode(data))

    def delete(self, collection: str, doc_id: str) -> None:
        self._transaction.delete(self._adapter._doc_ref(collection, doc_id))


class FirestoreDatabaseProvider(DatabaseProviderInterface):
    """
    Firestore database adapter.

    The client is obtained through a callable so a client-context
    provider can swap the underlying AsyncClient when the signed-in
    user's credentials change. Live subscriptions need the synchronous
    client (snapshot listeners run on a watch thread), supplied through
    ``watch_client_provider``.
    """

    def __init__(
        self,
        client_provider: Callable[[], Any],
        context: ExecutionContext,
        watch_client_provider: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__(context)
        self._client_provider = client_provider
        self._watch_client_provider = watch_client_provider

    @property
    def capabilities(self) -> DatabaseCapabilities:
        return FIRESTORE_CAPABILITIES

    @property
    def _client(self) -> Any:
        return self._client_provider()

    # =========================================================================
    # References
    # =========================================================================

    def _doc_ref(self, collection: str, doc_id: str, client: Any = None) -> Any:
        return (client or self._client).collection(collection).document(doc_id)

    def _sub_collection_ref(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        client: Any = None,
    ) -> Any:
        return self._doc_ref(parent_collection, parent_doc_id, client).collection(sub_collection)

    def _sub_doc_ref(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> Any:
        return self._sub_collection_ref(parent_collection, parent_doc_id, sub_collection).document(sub_doc_id)

    # =========================================================================
    # Encoding / Decoding
    # =========================================================================

    def _encode(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._encode_field_values(dates_to_native(data, self.to_timestamp))

    def _encode_field_values(self, value: Any) -> Any:
        if isinstance(value, FieldValue):
            return self._to_sentinel(value)
        if isinstance(value, dict):
            return {k: self._encode_field_values(v) for k, v in value.items()}
        return value

    def _to_sentinel(self, value: FieldValue) -> Any:
        self.capabilities.check_field_value(value.kind)
        if value.kind is FieldValueKind.SERVER_TIMESTAMP:
            return firestore.SERVER_TIMESTAMP
        if value.kind is FieldValueKind.INCREMENT:
            return firestore.Increment(value.value)
        if value.kind is FieldValueKind.ARRAY_UNION:
            return firestore.ArrayUnion(dates_to_native(list(value.value), self.to_timestamp))
        if value.kind is FieldValueKind.ARRAY_REMOVE:
            return firestore.ArrayRemove(dates_to_native(list(value.value), self.to_timestamp))
        return firestore.DELETE_FIELD

    def _encode_value(self, value: Any) -> Any:
        if isinstance(value, (dict, list, tuple, datetime)):
            return dates_to_native(value, self.to_timestamp)
        return value

    def _decode(self, data: dict[str, Any]) -> dict[str, Any]:
        return dates_from_native(data, self._decode_leaf, lambda v: isinstance(v, (datetime, Vector)))

    def _decode_leaf(self, value: Any) -> Any:
        if isinstance(value, Vector):
            return [float(v) for v in value]
        return self.from_timestamp(value)

    def _to_snapshot(self, snapshot: Any) -> DocumentSnapshot:
        if not snapshot.exists:
            return DocumentSnapshot(id=snapshot.id)
        return DocumentSnapshot(id=snapshot.id, data=self._decode(snapshot.to_dict() or {}))

    def _to_query_snapshot(self, snapshots: List[Any]) -> QuerySnapshot:
        return QuerySnapshot(docs=[self._to_snapshot(s) for s in snapshots])

    def _build_query(self, ref: Any, constraints: tuple[QueryConstraint, ...]) -> Any:
        self.capabilities.check_query(constraints)
        query = ref
        for constraint, order in pair_cursors(constraints):
            if constraint.type is ConstraintType.WHERE:
                query = query.where(filter=FieldFilter(
                    constraint.field,
                    _OPERATORS[constraint.op],
                    self._encode_value(constraint.value),
                ))
            elif constraint.type is ConstraintType.ORDER_BY:
                direction = (
                    firestore.Query.DESCENDING
                    if constraint.direction is OrderDirection.DESC
                    else firestore.Query.ASCENDING
                )
                query = query.order_by(constraint.field, direction=direction)
            elif constraint.type is ConstraintType.LIMIT:
                query = query.limit(constraint.value)
            elif constraint.type is ConstraintType.START_AFTER:
                query = query.start_after({order.field: self._encode_value(constraint.value)})
            elif constraint.type is ConstraintType.START_AT:
                query = query.start_at({order.field: self._encode_value(constraint.value)})
        return query

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_doc(self, collection: str, doc_id: str) -> DocumentSnapshot:
        with _firestore_errors("get_doc", f"{collection}/{doc_id}"):
            snapshot = await self._doc_ref(collection, doc_id).get()
        return self._to_snapshot(snapshot)

    async def get_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> DocumentSnapshot:
        path = f"{parent_collection}/{parent_doc_id}/{sub_collection}/{sub_doc_id}"
        with _firestore_errors("get_sub_doc", path):
            snapshot = await self._sub_doc_ref(parent_collection, parent_doc_id, sub_collection, sub_doc_id).get()
        return self._to_snapshot(snapshot)

    async def get_docs(self, collection: str, *constraints: QueryConstraint) -> QuerySnapshot:
        query = self._build_query(self._client.collection(collection), constraints)
        with _firestore_errors("get_docs", collection):
            snapshots = await query.get()
        return self._to_query_snapshot(snapshots)

    async def get_sub_docs(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        *constraints: QueryConstraint,
    ) -> QuerySnapshot:
        ref = self._sub_collection_ref(parent_collection, parent_doc_id, sub_collection)
        query = self._build_query(ref, constraints)
        with _firestore_errors("get_sub_docs", f"{parent_collection}/{parent_doc_id}/{sub_collection}"):
            snapshots = await query.get()
        return self._to_query_snapshot(snapshots)

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
        with _firestore_errors("set_doc", f"{collection}/{doc_id}"):
            await self._doc_ref(collection, doc_id).set(self._encode(data), merge=merge)

    async def set_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        path = f"{parent_collection}/{parent_doc_id}/{sub_collection}/{sub_doc_id}"
        ref = self._sub_doc_ref(parent_collection, parent_doc_id, sub_collection, sub_doc_id)
        with _firestore_errors("set_sub_doc", path):
            await ref.set(self._encode(data), merge=merge)

    async def update_doc(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with _firestore_errors("update_doc", f"{collection}/{doc_id}"):
            await self._doc_ref(collection, doc_id).update(self._encode(data))

    async def update_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
        data: dict[str, Any],
    ) -> None:
        path = f"{parent_collection}/{parent_doc_id}/{sub_collection}/{sub_doc_id}"
        ref = self._sub_doc_ref(parent_collection, parent_doc_id, sub_collection, sub_doc_id)
        with _firestore_errors("update_sub_doc", path):
            await ref.update(self._encode(data))

    async def delete_doc(self, collection: str, doc_id: str) -> None:
        with _firestore_errors("delete_doc", f"{collection}/{doc_id}"):
            await self._doc_ref(collection, doc_id).delete()

    async def delete_sub_doc(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        sub_doc_id: str,
    ) -> None:
        path = f"{parent_collection}/{parent_doc_id}/{sub_collection}/{sub_doc_id}"
        ref = self._sub_doc_ref(parent_collection, parent_doc_id, sub_collection, sub_doc_id)
        with _firestore_errors("delete_sub_doc", path):
            await ref.delete()

    # =========================================================================
    # Live Subscriptions
    # =========================================================================

    def _watch_client(self, operation: str) -> Any:
        require_context(self.context, ExecutionContext.CLIENT, operation)
        self.capabilities.require(Feature.REALTIME)
        if self._watch_client_provider is None:
            raise DatabaseError(f"{operation}: no realtime client configured")
        return self._watch_client_provider()

    @staticmethod
    def _unsubscriber(watch: Any, description: str) -> Unsubscribe:
        async def unsubscribe() -> None:
            watch.unsubscribe()
            logger.debug("Firestore listener removed | %s", description)
        return unsubscribe

    def _deliver(self, produce: Callable[[], Any], callback: Callable[[Any], None],
                 on_error: Optional[ErrorCallback]) -> None:
        # Runs on the Firestore watch thread
        try:
            callback(produce())
        except Exception as exc:
            if on_error is None:
                logger.error("Unhandled error in snapshot callback: %s", exc, exc_info=True)
                return
            on_error(exc)

    async def on_snapshot(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        client = self._watch_client("on_snapshot")
        ref = self._doc_ref(collection, doc_id, client)

        def handle(docs: List[Any], changes: Any, read_time: Any) -> None:
            self._deliver(
                lambda: self._to_snapshot(docs[0]) if docs else DocumentSnapshot(id=doc_id),
                callback,
                on_error,
            )

        watch = ref.on_snapshot(handle)
        return self._unsubscriber(watch, f"{collection}/{doc_id}")

    async def on_snapshot_query(
        self,
        collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        client = self._watch_client("on_snapshot_query")
        query = self._build_query(client.collection(collection), constraints)

        def handle(docs: List[Any], changes: Any, read_time: Any) -> None:
            self._deliver(lambda: self._to_query_snapshot(docs), callback, on_error)

        watch = query.on_snapshot(handle)
        return self._unsubscriber(watch, collection)

    async def on_snapshot_sub_collection(
        self,
        parent_collection: str,
        parent_doc_id: str,
        sub_collection: str,
        callback: QueryCallback,
        *constraints: QueryConstraint,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        client = self._watch_client("on_snapshot_sub_collection")
        ref = self._sub_collection_ref(parent_collection, parent_doc_id, sub_collection, client)
        query = self._build_query(ref, constraints)

        def handle(docs: List[Any], changes: Any, read_time: Any) -> None:
            self._deliver(lambda: self._to_query_snapshot(docs), callback, on_error)

        watch = query.on_snapshot(handle)
        return self._unsubscriber(watch, f"{parent_collection}/{parent_doc_id}/{sub_collection}")

    # =========================================================================
    # Batches / Transactions
    # =========================================================================

    def batch(self) -> BatchWrite:
        return FirestoreBatchWrite(self)

    async def run_transaction(self, update_function: TransactionFunction) -> Any:
        transaction = self._client.transaction()

        @firestore.async_transactional
        async def run(txn: Any) -> Any:
            return await update_function(FirestoreTransaction(self, txn))

        with _firestore_errors("run_transaction", "<transaction>"):
            return await run(transaction)

    def generate_id(self) -> str:
        return generate_document_id()

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
        self.capabilities.require(Feature.VECTOR_SEARCH)
        query = self._client.collection(collection).find_nearest(
            vector_field=vector_field,
            query_vector=Vector(query_vector),
            distance_measure=FirestoreDistanceMeasure[options.distance_measure.value],
            limit=options.limit,
            distance_result_field=DISTANCE_RESULT_FIELD,
        )
        with _firestore_errors("find_nearest", collection):
            snapshots = await query.get()

        results: List[VectorSearchResult] = []
        for snapshot in snapshots:
            data = self._decode(snapshot.to_dict() or {})
            distance = data.pop(DISTANCE_RESULT_FIELD, None)
            results.append(VectorSearchResult(id=snapshot.id, data=data, distance=distance))
        return results

    # =========================================================================
    # Timestamps
    # =========================================================================

    def to_timestamp(self, value: datetime) -> DatetimeWithNanoseconds:
        value = ensure_aware(value)
        return DatetimeWithNanoseconds(
            value.year, value.month, value.day,
            value.hour, value.minute, value.second, value.microsecond,
            tzinfo=value.tzinfo,
        )

    def from_timestamp(self, value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            value = ensure_aware(value)
            return datetime(
                value.year, value.month, value.day,
                value.hour, value.minute, value.second, value.microsecond,
                tzinfo=value.tzinfo,
            )
        if hasattr(value, "ToDatetime"):
            # protobuf Timestamp
            return value.ToDatetime(tzinfo=timezone.utc)
        return None

    def get_db_instance(self) -> Any:
        return self._client
