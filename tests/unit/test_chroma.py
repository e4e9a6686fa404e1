"""Tests for Chroma provisioning, upsert and query."""
import httpx
import pytest

from ragtutor.errors import (
    InvalidConfiguration,
    ProvisioningError,
    RetrievalError,
    UpsertError,
    ValidationError,
)
from ragtutor.rag.chroma import (
    ChromaAdmin,
    Chunk,
    ChromaCollection,
    CollectionDescriptor,
)

pytestmark = pytest.mark.asyncio

TENANT = "tenant_a"
DATABASE = "db_a"


async def provisioned_collection(fake_chroma, chroma_admin, name="notes"):
    descriptor = await chroma_admin.provision(CollectionDescriptor(TENANT, DATABASE, name))
    return ChromaCollection(fake_chroma.client(), descriptor)


class TestEnsureTenant:
    async def test_existing_tenant_is_not_recreated(self, fake_chroma, chroma_admin):
        fake_chroma.tenants.add(TENANT)

        await chroma_admin.ensure_tenant(TENANT)

        assert fake_chroma.calls == [("GET", f"/tenants/{TENANT}")]

    async def test_missing_tenant_is_created(self, fake_chroma, chroma_admin):
        await chroma_admin.ensure_tenant(TENANT)

        assert TENANT in fake_chroma.tenants
        assert fake_chroma.calls == [("GET", f"/tenants/{TENANT}"), ("POST", "/tenants")]

    async def test_other_failures_propagate(self, fake_chroma, chroma_admin):
        fake_chroma.fail("GET", f"/tenants/{TENANT}", 500, "internal")

        with pytest.raises(ProvisioningError) as exc_info:
            await chroma_admin.ensure_tenant(TENANT)

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "internal"
        assert fake_chroma.count("POST") == 0

    async def test_failed_creation_propagates(self, fake_chroma, chroma_admin):
        fake_chroma.fail("POST", "/tenants", 409, "conflict")

        with pytest.raises(ProvisioningError):
            await chroma_admin.ensure_tenant(TENANT)


class TestEnsureDatabase:
    async def test_creates_only_when_absent(self, fake_chroma, chroma_admin):
        fake_chroma.tenants.add(TENANT)

        await chroma_admin.ensure_database(TENANT, DATABASE)
        await chroma_admin.ensure_database(TENANT, DATABASE)

        assert fake_chroma.databases[TENANT] == {DATABASE}
        assert fake_chroma.count("POST", "/databases") == 1

    async def test_listing_failure_propagates(self, fake_chroma, chroma_admin):
        fake_chroma.fail("GET", f"/tenants/{TENANT}/databases", 503)

        with pytest.raises(ProvisioningError):
            await chroma_admin.ensure_database(TENANT, DATABASE)


class TestEnsureCollection:
    @pytest.fixture(autouse=True)
    def tenant_and_database(self, fake_chroma):
        fake_chroma.tenants.add(TENANT)
        fake_chroma.databases[TENANT] = {DATABASE}

    async def test_repeated_calls_return_same_id_and_create_once(self, fake_chroma, chroma_admin):
        first = await chroma_admin.ensure_collection(TENANT, DATABASE, "notes")
        second = await chroma_admin.ensure_collection(TENANT, DATABASE, "notes")

        assert first == second
        assert fake_chroma.count("POST", "/collections") == 1

    async def test_fresh_admin_reuses_listed_collection(self, fake_chroma, chroma_admin):
        first = await chroma_admin.ensure_collection(TENANT, DATABASE, "notes")
        second = await ChromaAdmin(fake_chroma.client()).ensure_collection(
            TENANT, DATABASE, "notes"
        )

        assert first == second
        assert fake_chroma.count("POST", "/collections") == 1

    async def test_existing_collection_is_reused(self, fake_chroma, chroma_admin):
        fake_chroma.collections[(TENANT, DATABASE)] = {"notes": "existing-id"}

        assert await chroma_admin.ensure_collection(TENANT, DATABASE, "notes") == "existing-id"
        assert fake_chroma.count("POST") == 0

    async def test_created_collection_without_id(self, fake_chroma, chroma_admin, monkeypatch):
        original = fake_chroma.handler

        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"name": "notes"})
            return original(request)

        monkeypatch.setattr(fake_chroma, "handler", handler)

        with pytest.raises(ProvisioningError):
            await ChromaAdmin(fake_chroma.client()).ensure_collection(TENANT, DATABASE, "notes")

    async def test_malformed_listing(self, fake_chroma, chroma_admin, monkeypatch):
        monkeypatch.setattr(
            fake_chroma, "handler", lambda request: httpx.Response(200, json={"oops": 1})
        )

        with pytest.raises(ProvisioningError):
            await ChromaAdmin(fake_chroma.client()).ensure_collection(TENANT, DATABASE, "notes")


class TestProvision:
    async def test_provisions_everything_from_scratch(self, fake_chroma, chroma_admin):
        descriptor = await chroma_admin.provision(CollectionDescriptor(TENANT, DATABASE, "notes"))

        assert descriptor.collection_id == fake_chroma.collections[(TENANT, DATABASE)]["notes"]
        assert TENANT in fake_chroma.tenants
        assert fake_chroma.databases[TENANT] == {DATABASE}

    async def test_known_id_skips_network(self, fake_chroma, chroma_admin):
        descriptor = CollectionDescriptor(TENANT, DATABASE, "notes", collection_id="cached")

        assert await chroma_admin.provision(descriptor) is descriptor
        assert fake_chroma.calls == []

    async def test_heartbeat(self, fake_chroma, chroma_admin):
        assert await chroma_admin.heartbeat() is True

        fake_chroma.fail("GET", "/heartbeat", 502)
        assert await chroma_admin.heartbeat() is False


class TestUpsert:
    async def test_sends_parallel_lists(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        chunks = [
            Chunk(id="chunk_0", text="alpha", embedding=(0.0, 1.0)),
            Chunk(id="chunk_1", text="beta", embedding=(1.0, 0.0)),
        ]

        assert await collection.upsert(chunks) == 2

        stored = fake_chroma.records[collection.descriptor.collection_id]
        assert [(r[0], r[1], r[2]) for r in stored] == [
            ("chunk_0", "alpha", [0.0, 1.0]),
            ("chunk_1", "beta", [1.0, 0.0]),
        ]

    @pytest.mark.parametrize(
        "bad_embedding",
        [(), (0.1, "x"), (0.1, None), None, (True, 1.0)],
    )
    async def test_malformed_batch_makes_no_calls(self, fake_chroma, chroma_admin, bad_embedding):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        calls_before = len(fake_chroma.calls)
        chunks = [
            Chunk(id="chunk_0", text="fine", embedding=(0.1, 0.2)),
            Chunk(id="chunk_1", text="broken", embedding=bad_embedding),
        ]

        with pytest.raises(ValidationError) as exc_info:
            await collection.upsert(chunks)

        assert exc_info.value.chunk_id == "chunk_1"
        assert len(fake_chroma.calls) == calls_before

    async def test_empty_batch_is_noop(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        calls_before = len(fake_chroma.calls)

        assert await collection.upsert([]) == 0
        assert len(fake_chroma.calls) == calls_before

    async def test_server_failure(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        fake_chroma.fail("POST", f"{collection.path}/add", 422, "dimension mismatch")

        with pytest.raises(UpsertError) as exc_info:
            await collection.upsert([Chunk(id="chunk_0", text="a", embedding=(1.0,))])

        assert exc_info.value.status_code == 422

    async def test_unresolved_descriptor_rejected(self, fake_chroma):
        with pytest.raises(InvalidConfiguration):
            ChromaCollection(fake_chroma.client(), CollectionDescriptor(TENANT, DATABASE, "notes"))


class TestQuery:
    async def test_nearest_first_and_at_most_k(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        await collection.upsert(
            [Chunk(id=f"chunk_{i}", text=f"doc {i}", embedding=(float(i), 0.0)) for i in range(6)]
        )

        result = await collection.query([4.2, 0.0], 5)

        assert result.documents == ["doc 4", "doc 5", "doc 3", "doc 2", "doc 1"]
        assert result.distances == sorted(result.distances)
        assert len(result) == 5

    async def test_fewer_documents_than_k(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        await collection.upsert([Chunk(id="chunk_0", text="only", embedding=(1.0,))])

        result = await collection.query([1.0], 5)

        assert result.documents == ["only"]

    async def test_invalid_k(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)

        with pytest.raises(InvalidConfiguration):
            await collection.query([1.0], 0)

    async def test_malformed_response(self, fake_chroma, chroma_admin, monkeypatch):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        monkeypatch.setattr(
            fake_chroma, "handler", lambda request: httpx.Response(200, json={"ids": [["a"]]})
        )
        collection.client = fake_chroma.client()

        with pytest.raises(RetrievalError):
            await collection.query([1.0], 3)

    async def test_distances_stay_aligned_with_documents(
        self, fake_chroma, chroma_admin, monkeypatch
    ):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        monkeypatch.setattr(
            fake_chroma,
            "handler",
            lambda request: httpx.Response(
                200,
                json={
                    "documents": [["near", None, "middle", "far"]],
                    "distances": [[0.1, 0.2, None, 0.4]],
                },
            ),
        )
        collection.client = fake_chroma.client()

        result = await collection.query([1.0], 4)

        assert result.documents == ["near", "middle", "far"]
        assert result.distances == [0.1, None, 0.4]

    async def test_missing_distances_are_padded(self, fake_chroma, chroma_admin, monkeypatch):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        monkeypatch.setattr(
            fake_chroma,
            "handler",
            lambda request: httpx.Response(200, json={"documents": [["a", "b"]]}),
        )
        collection.client = fake_chroma.client()

        result = await collection.query([1.0], 2)

        assert len(result.distances) == len(result.documents) == 2
        assert result.distances == [None, None]

    async def test_server_failure(self, fake_chroma, chroma_admin):
        collection = await provisioned_collection(fake_chroma, chroma_admin)
        fake_chroma.fail("POST", f"{collection.path}/query", 500)

        with pytest.raises(RetrievalError) as exc_info:
            await collection.query([1.0], 3)

        assert exc_info.value.status_code == 500
