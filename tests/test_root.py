import json

import pytest

from stratum.errors import (
    ConflictError,
    FormatError,
    SchemaVersionError,
    TransportError,
    UnsafeGenerationError,
    ValidationError,
)
from stratum.transports.base import Response


@pytest.fixture
def root(client):
    return client.root


def root_response(payload) -> Response:
    return Response(200, json.dumps(payload).encode("utf-8"), "OK")


class TestGet:
    """
    Tests for fetching the root pointer.
    """

    @pytest.mark.asyncio
    async def test_get(self, server, root):
        assert await root.get() == (server.root_hash, 1)
        [request] = server.requests
        assert request.path == "/sync/v4/root"

    @pytest.mark.asyncio
    async def test_cached_until_refresh(self, server, root):
        await root.get()
        await root.get()
        assert len(server.requests) == 1
        server.advance()
        assert await root.get(use_cache=False) == (server.root_hash, 2)
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, server, root):
        await root.get()
        root.invalidate()
        await root.get()
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_wrong_schema_version(self, server, root):
        server.schema_version = 4
        with pytest.raises(SchemaVersionError, match="schema version 4 not supported"):
            await root.get()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "generation", [1.5, 9007199254740992, -9007199254740992, 2.0**60]
    )
    async def test_unsafe_generation(self, server, root, generation):
        server.canned = [
            root_response(
                {"hash": "0" * 64, "generation": generation, "schemaVersion": 3}
            )
        ]
        with pytest.raises(UnsafeGenerationError):
            await root.get()

    @pytest.mark.asyncio
    async def test_whole_float_generation(self, server, root):
        server.canned = [
            root_response({"hash": "0" * 64, "generation": 7.0, "schemaVersion": 3})
        ]
        assert await root.get() == ("0" * 64, 7)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"generation": 1, "schemaVersion": 3},
            {"hash": "0" * 64, "generation": "1", "schemaVersion": 3},
            {"hash": "0" * 64, "generation": 1},
            ["not", "an", "object"],
        ],
    )
    async def test_malformed(self, server, root, payload):
        server.canned = [root_response(payload)]
        with pytest.raises(FormatError):
            await root.get()

    @pytest.mark.asyncio
    async def test_server_error(self, server, root):
        server.canned = [Response(503, b"unavailable", "Service Unavailable")]
        with pytest.raises(TransportError) as info:
            await root.get()
        assert info.value.status == 503
        assert root.cached is None


class TestPut:
    """
    Tests for swinging the root pointer.
    """

    @pytest.mark.asyncio
    async def test_put(self, server, root):
        new_hash = server.add_list("root", [server.add_file("a", b"a")])["hash"]
        assert await root.put(new_hash, 1) == (new_hash, 2)
        assert server.root_hash == new_hash
        request = server.requests_for("PUT", "/sync/v3/root")[0]
        assert request.json == {"hash": new_hash, "generation": 1, "broadcast": True}
        # The new pointer is remembered without another fetch
        assert await root.get() == (new_hash, 2)
        assert server.requests_for("GET") == []

    @pytest.mark.asyncio
    async def test_put_without_broadcast(self, server, root):
        await root.put(server.root_hash, 1, broadcast=False)
        assert server.requests[-1].json["broadcast"] is False

    @pytest.mark.asyncio
    async def test_stale_generation_conflicts(self, server, root):
        await root.get()
        old_hash = server.root_hash
        server.advance()
        with pytest.raises(ConflictError) as info:
            await root.put(old_hash, 1)
        assert info.value.generation == 1
        assert not isinstance(info.value, TransportError)
        assert root.cached is None
        assert await root.get() == (old_hash, 2)

    @pytest.mark.asyncio
    async def test_other_failures_are_transport_errors(self, server, root):
        with pytest.raises(TransportError) as info:
            await root.put("f" * 64, 1)
        assert info.value.status == 400

    @pytest.mark.asyncio
    async def test_invalid_hash_never_sent(self, server, root):
        with pytest.raises(ValidationError):
            await root.put("not a hash", 1)
        assert server.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("generation", [1.0, "1", 2**53, True])
    async def test_unsafe_generation_never_sent(self, server, root, generation):
        with pytest.raises(UnsafeGenerationError):
            await root.put(server.root_hash, generation)
        assert server.requests == []


class TestSyncComplete:
    """
    Tests for the broadcast notification.
    """

    @pytest.mark.asyncio
    async def test_success(self, server, root):
        assert await root.sync_complete(5)
        [request] = server.requests
        assert request.path == "/sync/v2/sync-complete"
        assert request.json == {"generation": 5}

    @pytest.mark.asyncio
    async def test_failure_reported(self, server, root, caplog):
        server.canned = [Response(500, b"oops", "Internal Server Error")]
        assert not await root.sync_complete(5)
        assert "Sync complete for generation 5 failed" in caplog.text
