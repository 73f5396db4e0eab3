import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from postgrest.exceptions import APIError
from realtime.types import RealtimeSubscribeStates

from app.exceptions import (
    ContextViolationError,
    DatabaseError,
    QueryValidationError,
    UnsupportedFeatureError,
)
from app.providers.context import ExecutionContext
from app.providers.database import (
    DistanceMeasure,
    Feature,
    SubCollectionStrategy,
    VectorSearchOptions,
    limit,
    order_by,
    start_after,
    start_at,
    where,
)
from app.providers.database.supabase_impl import SupabaseDatabaseProvider, singularize


async def drain(adapter: SupabaseDatabaseProvider) -> None:
    """Wait for realtime re-fetch tasks spawned by change events."""
    while adapter._tasks:
        await asyncio.gather(*list(adapter._tasks))


class TestNaming:
    @pytest.mark.parametrize(
        "plural, singular",
        [("bikes", "bike"), ("categories", "category"), ("equipment", "equipment"), ("glass", "glass")],
    )
    def test_singularize(self, plural, singular):
        assert singularize(plural) == singular

    def test_derived_foreign_key(self, server_db):
        """Without a mapping the column is <singular parent>_id."""
        assert server_db.foreign_key("users", "bikes") == "user_id"

    def test_explicit_foreign_key_wins(self, client_db):
        assert client_db.foreign_key("bikes", "components") == "bike_ref"

    def test_parent_only_mapping(self, supabase_client):
        db = SupabaseDatabaseProvider(supabase_client, ExecutionContext.SERVER, foreign_keys={"users": "owner_id"})
        assert db.foreign_key("users", "bikes") == "owner_id"


class TestCapabilities:
    def test_declares_foreign_key_strategy(self, client_db):
        caps = client_db.capabilities
        assert caps.provider == "supabase"
        assert caps.sub_collections is SubCollectionStrategy.FOREIGN_KEY
        assert caps.supports(Feature.REALTIME)
        assert caps.supports(Feature.VECTOR_SEARCH)
        assert not caps.supports(Feature.TRANSACTIONS)
        assert not caps.supports(Feature.ATOMIC_BATCH)

    def test_vector_search_needs_configured_procedure(self, server_db):
        assert not server_db.capabilities.supports(Feature.VECTOR_SEARCH)

    @pytest.mark.asyncio
    async def test_transactions_are_refused(self, server_db):
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            await server_db.run_transaction(lambda txn: None)
        assert exc_info.value.status_code == 501
        assert "rpc" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_transforms_disabled_without_procedure(self, supabase_client):
        db = SupabaseDatabaseProvider(supabase_client, ExecutionContext.SERVER, transform_rpc=None)
        with pytest.raises(UnsupportedFeatureError):
            await db.set_doc("users", "u1", {"count": db.increment(1)})
        assert supabase_client.queries == []

    @pytest.mark.asyncio
    async def test_nested_field_value_rejected(self, server_db):
        with pytest.raises(UnsupportedFeatureError):
            await server_db.set_doc("users", "u1", {"stats": {"count": server_db.increment(1)}})


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_missing_document(self, server_db):
        snapshot = await server_db.get_doc("users", "nobody")
        assert snapshot.id == "nobody"
        assert snapshot.exists is False
        assert snapshot.data is None

    @pytest.mark.asyncio
    async def test_existing_document(self, server_db):
        await server_db.set_doc("users", "u1", {"displayName": "Ada"})
        snapshot = await server_db.get_doc("users", "u1")
        assert snapshot.exists is True
        assert snapshot.data == {"displayName": "Ada"}

    @pytest.mark.asyncio
    async def test_columns_are_snake_case(self, server_db, supabase_client):
        await server_db.set_doc("bikes", "b1", {"wearPercentage": 40, "photoURL": "x"})
        row = supabase_client.tables["bikes"]["b1"]
        assert row == {"id": "b1", "wear_percentage": 40, "photo_url": "x"}

    @pytest.mark.asyncio
    async def test_snake_case_conversion_can_be_disabled(self, supabase_client):
        db = SupabaseDatabaseProvider(supabase_client, ExecutionContext.SERVER, snake_case_columns=False)
        await db.set_doc("bikes", "b1", {"wearPercentage": 40})
        assert supabase_client.tables["bikes"]["b1"] == {"id": "b1", "wearPercentage": 40}
        assert (await db.get_doc("bikes", "b1")).data == {"wearPercentage": 40}

    @pytest.mark.asyncio
    async def test_date_round_trip(self, server_db, supabase_client):
        """Dates come back as equal aware datetimes, at any nesting depth."""
        when = datetime(2024, 3, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
        naive = datetime(2024, 1, 2, 3, 4, 5)
        offset = datetime(2024, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=2)))
        await server_db.set_doc("rides", "r1", {
            "startedAt": when,
            "laps": [{"at": naive}, {"at": offset}],
            "meta": {"createdAt": when},
        })

        assert isinstance(supabase_client.tables["rides"]["r1"]["started_at"], str)

        data = (await server_db.get_doc("rides", "r1")).data
        assert data["startedAt"] == when
        assert data["laps"][0]["at"] == naive.replace(tzinfo=timezone.utc)
        assert data["laps"][1]["at"] == offset
        assert data["meta"]["createdAt"] == when
        assert data["startedAt"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_merge_keeps_other_fields(self, server_db):
        await server_db.set_doc("users", "u1", {"name": "Ada", "city": "London"})
        await server_db.set_doc("users", "u1", {"city": "Paris"}, merge=True)
        assert (await server_db.get_doc("users", "u1")).data == {"name": "Ada", "city": "Paris"}

    @pytest.mark.asyncio
    async def test_replace_drops_other_fields(self, server_db):
        await server_db.set_doc("users", "u1", {"name": "Ada", "city": "London"})
        await server_db.set_doc("users", "u1", {"city": "Paris"})
        assert (await server_db.get_doc("users", "u1")).data == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_update_requires_existing_row(self, server_db):
        with pytest.raises(DatabaseError) as exc_info:
            await server_db.update_doc("users", "ghost", {"name": "x"})
        assert exc_info.value.error_code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_update_changes_only_given_fields(self, server_db):
        await server_db.set_doc("users", "u1", {"name": "Ada", "city": "London"})
        await server_db.update_doc("users", "u1", {"city": "Paris"})
        assert (await server_db.get_doc("users", "u1")).data == {"name": "Ada", "city": "Paris"}

    @pytest.mark.asyncio
    async def test_delete(self, server_db):
        await server_db.set_doc("users", "u1", {"name": "Ada"})
        await server_db.delete_doc("users", "u1")
        assert not (await server_db.get_doc("users", "u1")).exists

    @pytest.mark.asyncio
    async def test_unknown_columns_dropped(self, supabase_client):
        db = SupabaseDatabaseProvider(
            supabase_client,
            ExecutionContext.SERVER,
            table_columns={"users": ["id", "name"]},
        )
        await db.set_doc("users", "u1", {"name": "Ada", "nickname": "A"})
        assert supabase_client.tables["users"]["u1"] == {"id": "u1", "name": "Ada"}

    @pytest.mark.asyncio
    async def test_postgrest_error_becomes_database_error(self, server_db, supabase_client):
        supabase_client.errors[("users", "upsert")] = APIError(
            {"message": "permission denied for table users", "code": "42501", "hint": None, "details": None}
        )
        with pytest.raises(DatabaseError) as exc_info:
            await server_db.set_doc("users", "u1", {"name": "Ada"})
        assert exc_info.value.error_code == "42501"
        assert "users/u1" in exc_info.value.message

    def test_generate_id_is_uuid(self, server_db):
        first, second = server_db.generate_id(), server_db.generate_id()
        assert first != second
        assert str(uuid.UUID(first)) == first


class TestFieldValues:
    @pytest.mark.asyncio
    async def test_increment_twice(self, server_db):
        await server_db.set_doc("counters", "c1", {"count": 0})
        await server_db.update_doc("counters", "c1", {"count": server_db.increment(5)})
        await server_db.update_doc("counters", "c1", {"count": server_db.increment(5)})
        assert (await server_db.get_doc("counters", "c1")).data["count"] == 10

    @pytest.mark.asyncio
    async def test_transform_procedure_call(self, server_db, supabase_client):
        await server_db.set_doc("counters", "c1", {"loginCount": server_db.increment(1)})
        call = supabase_client.rpcs[-1]
        assert call.name == "apply_field_transforms"
        assert call.params == {
            "p_table": "counters",
            "p_id_column": "id",
            "p_id": "c1",
            "p_transforms": [{"column": "login_count", "op": "increment", "value": 1}],
        }
        assert (await server_db.get_doc("counters", "c1")).data == {"loginCount": 1}

    @pytest.mark.asyncio
    async def test_array_union_and_remove(self, server_db):
        await server_db.set_doc("users", "u1", {"tags": ["a"]})
        await server_db.update_doc("users", "u1", {"tags": server_db.array_union("a", "b", "c")})
        await server_db.update_doc("users", "u1", {"tags": server_db.array_remove("a")})
        assert (await server_db.get_doc("users", "u1")).data["tags"] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_delete_field(self, server_db):
        await server_db.set_doc("users", "u1", {"name": "Ada", "city": "London"})
        await server_db.update_doc("users", "u1", {"city": server_db.delete_field()})
        assert (await server_db.get_doc("users", "u1")).data == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_server_timestamp(self, server_db):
        before = datetime.now(timezone.utc)
        await server_db.set_doc("users", "u1", {"updatedAt": server_db.server_timestamp()})
        stamped = (await server_db.get_doc("users", "u1")).data["updatedAt"]
        assert isinstance(stamped, datetime)
        assert stamped >= before

    @pytest.mark.asyncio
    async def test_replace_starts_transforms_fresh(self, server_db):
        await server_db.set_doc("counters", "c1", {"count": 10, "label": "x"})
        await server_db.set_doc("counters", "c1", {"count": server_db.increment(5)})
        assert (await server_db.get_doc("counters", "c1")).data == {"count": 5}

        await server_db.set_doc("counters", "c1", {"count": server_db.increment(1)}, merge=True)
        assert (await server_db.get_doc("counters", "c1")).data == {"count": 6}

    def test_increment_requires_number(self, server_db):
        with pytest.raises(QueryValidationError):
            server_db.increment("5")


class TestSubCollections:
    @pytest.mark.asyncio
    async def test_sub_doc_rows_carry_foreign_key(self, client_db, supabase_client):
        await client_db.set_sub_doc("bikes", "b1", "components", "c1", {"name": "chain"})
        assert supabase_client.tables["components"]["c1"] == {"id": "c1", "name": "chain", "bike_ref": "b1"}

    @pytest.mark.asyncio
    async def test_sub_doc_scoped_to_parent(self, client_db):
        await client_db.set_sub_doc("bikes", "b1", "components", "c1", {"name": "chain"})
        assert (await client_db.get_sub_doc("bikes", "b1", "components", "c1")).exists
        assert not (await client_db.get_sub_doc("bikes", "b2", "components", "c1")).exists

    @pytest.mark.asyncio
    async def test_sub_docs_query(self, server_db):
        await server_db.set_sub_doc("users", "u1", "bikes", "b1", {"name": "road"})
        await server_db.set_sub_doc("users", "u1", "bikes", "b2", {"name": "gravel"})
        await server_db.set_sub_doc("users", "u2", "bikes", "b3", {"name": "mtb"})

        result = await server_db.get_sub_docs("users", "u1", "bikes", order_by("name"))
        assert [doc.id for doc in result] == ["b2", "b1"]
        assert result.docs[0].data == {"name": "gravel", "userId": "u1"}

    @pytest.mark.asyncio
    async def test_update_and_delete_sub_doc(self, server_db):
        await server_db.set_sub_doc("users", "u1", "bikes", "b1", {"name": "road"})
        await server_db.update_sub_doc("users", "u1", "bikes", "b1", {"name": "aero"})
        assert (await server_db.get_sub_doc("users", "u1", "bikes", "b1")).data["name"] == "aero"

        await server_db.delete_sub_doc("users", "u2", "bikes", "b1")
        assert (await server_db.get_sub_doc("users", "u1", "bikes", "b1")).exists

        await server_db.delete_sub_doc("users", "u1", "bikes", "b1")
        assert not (await server_db.get_sub_doc("users", "u1", "bikes", "b1")).exists


class TestQueries:
    @pytest.fixture
    async def seeded(self, server_db):
        await server_db.set_doc("bikes", "b1", {"name": "road", "km": 100, "tags": ["fast"]})
        await server_db.set_doc("bikes", "b2", {"name": "gravel", "km": 250, "tags": ["fast", "dirt"]})
        await server_db.set_doc("bikes", "b3", {"name": "mtb", "km": 400, "tags": ["dirt"]})
        return server_db

    @pytest.mark.asyncio
    async def test_comparison_operators(self, seeded):
        result = await seeded.get_docs("bikes", where("km", ">=", 250), order_by("km", "desc"))
        assert [doc.id for doc in result] == ["b3", "b2"]

    @pytest.mark.asyncio
    async def test_array_operators(self, seeded):
        contains = await seeded.get_docs("bikes", where("tags", "array-contains", "fast"))
        assert {doc.id for doc in contains} == {"b1", "b2"}
        any_of = await seeded.get_docs("bikes", where("tags", "array-contains-any", ["dirt"]))
        assert {doc.id for doc in any_of} == {"b2", "b3"}

    @pytest.mark.asyncio
    async def test_membership_operators(self, seeded):
        included = await seeded.get_docs("bikes", where("name", "in", ["road", "mtb"]))
        assert {doc.id for doc in included} == {"b1", "b3"}
        excluded = await seeded.get_docs("bikes", where("name", "not-in", ["road", "mtb"]))
        assert [doc.id for doc in excluded] == ["b2"]

    @pytest.mark.asyncio
    async def test_translation(self, server_db, supabase_client):
        await server_db.get_docs(
            "bikes",
            where("archivedAt", "==", None),
            where("ownerId", "!=", None),
            where("tags", "array-contains", "fast"),
            where("name", "not-in", ["x"]),
            order_by("createdAt", "desc"),
            limit(5),
        )
        assert supabase_client.queries[-1].calls == [
            ("select", "*"),
            ("is", "archived_at", "null"),
            ("not.is", "owner_id", "null"),
            ("contains", "tags", ["fast"]),
            ("not.in", "name", ["x"]),
            ("order", "created_at", True),
            ("limit", 5),
        ]

    @pytest.mark.asyncio
    async def test_cursor_follows_order_direction(self, seeded, supabase_client):
        ascending = await seeded.get_docs("bikes", order_by("km"), start_after(100))
        assert [doc.id for doc in ascending] == ["b2", "b3"]
        descending = await seeded.get_docs("bikes", order_by("km", "desc"), start_at(250))
        assert [doc.id for doc in descending] == ["b2", "b1"]
        assert ("lte", "km", 250) in supabase_client.queries[-1].calls

    @pytest.mark.asyncio
    async def test_cursor_without_order_rejected(self, server_db):
        with pytest.raises(QueryValidationError):
            await server_db.get_docs("bikes", start_after(10))

    def test_unknown_operator_rejected(self):
        with pytest.raises(QueryValidationError):
            where("km", "~=", 1)

    def test_membership_requires_list(self):
        with pytest.raises(QueryValidationError):
            where("name", "in", "road")

    @pytest.mark.parametrize("bad", [0, -1, 2.5, True])
    def test_limit_must_be_positive_int(self, bad):
        with pytest.raises(QueryValidationError):
            limit(bad)

    @pytest.mark.asyncio
    async def test_query_snapshot(self, seeded):
        result = await seeded.get_docs("bikes", where("km", ">", 1000))
        assert result.empty
        assert result.size == 0


class TestBatch:
    @pytest.mark.asyncio
    async def test_applies_all_writes(self, server_db):
        await server_db.set_doc("users", "gone", {"name": "old"})
        batch = server_db.batch()
        batch.set("users", "u1", {"name": "Ada"})
        batch.set("users", "u2", {"name": "Bob"})
        batch.delete("users", "gone")
        await batch.commit()

        assert (await server_db.get_doc("users", "u1")).data == {"name": "Ada"}
        assert (await server_db.get_doc("users", "u2")).data == {"name": "Bob"}
        assert not (await server_db.get_doc("users", "gone")).exists

    @pytest.mark.asyncio
    async def test_failure_reports_progress(self, server_db):
        batch = server_db.batch()
        batch.set("users", "u1", {"name": "Ada"})
        batch.update("users", "ghost", {"name": "x"})
        batch.set("users", "u3", {"name": "Cy"})

        with pytest.raises(DatabaseError) as exc_info:
            await batch.commit()

        assert "after 1 of 3 writes" in exc_info.value.message
        assert exc_info.value.error_code == "NOT_FOUND"
        assert (await server_db.get_doc("users", "u1")).exists
        assert not (await server_db.get_doc("users", "u3")).exists


    @pytest.mark.asyncio
    async def test_payload_captured_when_queued(self, server_db):
        data = {"a": 1}
        batch = server_db.batch()
        batch.set("users", "u1", data)
        data["a"] = 2
        await batch.commit()
        assert (await server_db.get_doc("users", "u1")).data == {"a": 1}

    @pytest.mark.asyncio
    async def test_retry_skips_applied_writes(self, server_db, supabase_client):
        await server_db.set_doc("counters", "c1", {"count": 0})
        batch = server_db.batch()
        batch.update("counters", "c1", {"count": server_db.increment(1)})
        batch.update("counters", "ghost", {"count": 1})
        with pytest.raises(DatabaseError):
            await batch.commit()

        await server_db.set_doc("counters", "ghost", {"count": 0})
        await batch.commit()

        assert (await server_db.get_doc("counters", "c1")).data == {"count": 1}
        assert (await server_db.get_doc("counters", "ghost")).data == {"count": 1}


class TestVectorSearch:
    @pytest.mark.asyncio
    async def test_distance_from_similarity(self, client_db, supabase_client):
        supabase_client.rpc_handlers["search_similar_components"] = lambda client, params: [
            {"id": "m1", "name": "Chain", "similarity": 0.9},
            {"id": "m2", "name": "Cassette", "similarity": 0.5},
        ]
        results = await client_db.find_nearest(
            "master_components", "embedding", [0.1, 0.2], VectorSearchOptions(limit=2)
        )
        assert [r.id for r in results] == ["m1", "m2"]
        assert results[0].data == {"name": "Chain"}
        assert results[0].distance == pytest.approx(0.1)
        assert supabase_client.rpcs[-1].params == {
            "query_embedding": [0.1, 0.2],
            "match_threshold": 0.0,
            "match_count": 2,
        }

    @pytest.mark.asyncio
    async def test_unmapped_table(self, client_db):
        with pytest.raises(UnsupportedFeatureError):
            await client_db.find_nearest("bikes", "embedding", [0.1], VectorSearchOptions(limit=1))

    @pytest.mark.asyncio
    async def test_only_cosine(self, client_db):
        options = VectorSearchOptions(limit=1, distance_measure=DistanceMeasure.EUCLIDEAN)
        with pytest.raises(UnsupportedFeatureError):
            await client_db.find_nearest("master_components", "embedding", [0.1], options)


class TestRealtime:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "subscribe",
        [
            lambda db: db.on_snapshot("users", "u1", lambda s: None),
            lambda db: db.on_snapshot_query("users", lambda s: None),
            lambda db: db.on_snapshot_sub_collection("users", "u1", "bikes", lambda s: None),
        ],
    )
    async def test_server_context_rejected(self, server_db, supabase_client, subscribe):
        with pytest.raises(ContextViolationError):
            await subscribe(server_db)
        assert supabase_client.channels == []

    @pytest.mark.asyncio
    async def test_document_listener(self, client_db, supabase_client):
        await client_db.set_doc("users", "u1", {"name": "Ada"})
        seen = []
        unsubscribe = await client_db.on_snapshot("users", "u1", seen.append)

        assert seen[0].data == {"name": "Ada"}
        channel = supabase_client.channels[0]
        assert channel.listeners[0][1] == {"event": "*", "table": "users", "schema": "public", "filter": "id=eq.u1"}

        await client_db.update_doc("users", "u1", {"name": "Ada L."})
        channel.emit()
        await drain(client_db)
        assert seen[-1].data == {"name": "Ada L."}

        await unsubscribe()
        assert channel.removed

    @pytest.mark.asyncio
    async def test_sub_collection_listener_filters_on_parent(self, client_db, supabase_client):
        seen = []
        await client_db.on_snapshot_sub_collection("bikes", "b1", "components", seen.append)
        assert supabase_client.channels[0].listeners[0][1]["filter"] == "bike_ref=eq.b1"
        assert seen[0].empty

    @pytest.mark.asyncio
    async def test_channel_error_reported(self, client_db, supabase_client):
        errors = []
        await client_db.on_snapshot_query("users", lambda s: None, on_error=errors.append)
        supabase_client.channels[0].state_callback(RealtimeSubscribeStates.CHANNEL_ERROR, None)
        assert isinstance(errors[0], DatabaseError)

    @pytest.mark.asyncio
    async def test_callback_errors_go_to_on_error(self, client_db):
        errors = []

        def explode(snapshot):
            raise ValueError("boom")

        await client_db.on_snapshot("users", "u1", explode, on_error=errors.append)
        assert isinstance(errors[0], ValueError)


class TestContextGuards:
    def test_adapters_remember_context(self, client_db, server_db):
        assert client_db.context is ExecutionContext.CLIENT
        assert server_db.context is ExecutionContext.SERVER
