"""Tests for the Blossom client against an httpx mock transport."""

import base64
import json

import httpx
import pytest

from conftest import NOW_TS, SITE_PUBKEY, FakeSigner
from zap_directory.core.enums import EventKind
from zap_directory.core.errors import DeleteError, UploadError
from zap_directory.core.ids import sha256_hex
from zap_directory.storage.blossom import BlossomClient, encode_auth

BLOB = b'{\n  "names": {},\n  "relays": {}\n}'
SHA = sha256_hex(BLOB)


def _decode_auth(header: str) -> dict:
    scheme, _, payload = header.partition(" ")
    assert scheme == "Nostr"
    return json.loads(base64.b64decode(payload))


class FakeBlossomServer:
    """Routes requests by host; records what it saw."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reject: dict[str, tuple[int, str]] = {}
        self.down: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if host in self.reject:
            status, reason = self.reject[host]
            return httpx.Response(status, headers={"X-Reason": reason})
        if request.method == "PUT":
            body = request.content
            return httpx.Response(200, json={
                "url": f"https://{host}/{sha256_hex(body)}",
                "sha256": sha256_hex(body),
                "size": len(body),
                "type": request.headers.get("Content-Type"),
                "uploaded": NOW_TS,
            })
        if request.method == "DELETE":
            return httpx.Response(200)
        return httpx.Response(405)


@pytest.fixture
def server():
    return FakeBlossomServer()


@pytest.fixture
def client(server, sim_clock):
    c = BlossomClient(FakeSigner(), sim_clock, auth_ttl=600)
    c._client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return c


class TestAuth:
    @pytest.mark.asyncio
    async def test_upload_auth_event(self, client):
        auth = await client.create_upload_auth(BLOB)
        assert auth.kind == EventKind.BLOSSOM_AUTH
        assert auth.pubkey == SITE_PUBKEY
        assert auth.content == "Upload Blob"
        assert auth.tag_value("t") == "upload"
        assert auth.tag_value("x") == SHA
        assert auth.tag_value("expiration") == str(NOW_TS + 600)

    @pytest.mark.asyncio
    async def test_delete_auth_event(self, client):
        auth = await client.create_delete_auth(SHA)
        assert auth.tag_value("t") == "delete"
        assert auth.tag_value("x") == SHA

    @pytest.mark.asyncio
    async def test_header_roundtrip(self, client):
        auth = await client.create_upload_auth(BLOB)
        decoded = _decode_auth(encode_auth(auth))
        assert decoded["id"] == auth.id
        assert decoded["tags"] == auth.tags


class TestUpload:
    @pytest.mark.asyncio
    async def test_put_upload(self, client, server):
        auth = await client.create_upload_auth(BLOB)
        descriptor = await client.upload_blob("https://cdn.example/", BLOB, auth)

        assert descriptor.sha256 == SHA
        assert descriptor.size == len(BLOB)
        request = server.requests[0]
        assert request.method == "PUT"
        assert str(request.url) == "https://cdn.example/upload"
        assert request.headers["Content-Type"] == "application/json"
        assert _decode_auth(request.headers["Authorization"])["id"] == auth.id
        assert request.content == BLOB

    @pytest.mark.asyncio
    async def test_rejection_reason_from_header(self, client, server):
        server.reject["cdn.example"] = (401, "auth expired")
        auth = await client.create_upload_auth(BLOB)
        with pytest.raises(UploadError) as excinfo:
            await client.upload_blob("https://cdn.example", BLOB, auth)
        assert excinfo.value.status == 401
        assert excinfo.value.reason == "auth expired"

    @pytest.mark.asyncio
    async def test_transport_error(self, client, server):
        server.down.add("cdn.example")
        auth = await client.create_upload_auth(BLOB)
        with pytest.raises(UploadError):
            await client.upload_blob("https://cdn.example", BLOB, auth)

    @pytest.mark.asyncio
    async def test_hash_mismatch(self, sim_clock):
        def handler(request):
            return httpx.Response(200, json={"sha256": "00" * 32, "size": 1})

        c = BlossomClient(FakeSigner(), sim_clock)
        c._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        auth = await c.create_upload_auth(BLOB)
        with pytest.raises(UploadError, match="expected"):
            await c.upload_blob("https://cdn.example", BLOB, auth)

    @pytest.mark.asyncio
    async def test_empty_success_body(self, sim_clock):
        c = BlossomClient(FakeSigner(), sim_clock)
        c._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(201))
        )
        auth = await c.create_upload_auth(BLOB)
        descriptor = await c.upload_blob("https://cdn.example", BLOB, auth)
        assert descriptor.sha256 == SHA

    @pytest.mark.asyncio
    async def test_multi_server_partial_failure(self, client, server):
        server.reject["b.example"] = (413, "too large")
        auth = await client.create_upload_auth(BLOB)
        results = await client.multi_server_upload(
            ["https://a.example", "https://b.example", "https://c.example"], BLOB, auth
        )
        assert [(r.server, r.ok) for r in results] == [
            ("https://a.example", True),
            ("https://b.example", False),
            ("https://c.example", True),
        ]
        assert results[1].error == "too large"

    @pytest.mark.asyncio
    async def test_malformed_server_url_fails_alone(self, client, server):
        auth = await client.create_upload_auth(BLOB)
        results = await client.multi_server_upload(
            ["https://[::1", "https://a.example"], BLOB, auth
        )
        assert [(r.server, r.ok) for r in results] == [
            ("https://[::1", False),
            ("https://a.example", True),
        ]
        assert results[0].error
        assert [r.url.host for r in server.requests] == ["a.example"]


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_by_hash(self, client, server):
        auth = await client.create_delete_auth(SHA)
        await client.delete_blob("https://cdn.example", SHA, auth)
        request = server.requests[0]
        assert request.method == "DELETE"
        assert str(request.url) == f"https://cdn.example/{SHA}"

    @pytest.mark.asyncio
    async def test_missing_blob_is_fine(self, client, server):
        server.reject["cdn.example"] = (404, "not found")
        auth = await client.create_delete_auth(SHA)
        await client.delete_blob("https://cdn.example", SHA, auth)  # Should not raise

    @pytest.mark.asyncio
    async def test_forbidden(self, client, server):
        server.reject["cdn.example"] = (403, "not your blob")
        auth = await client.create_delete_auth(SHA)
        with pytest.raises(DeleteError, match="not your blob"):
            await client.delete_blob("https://cdn.example", SHA, auth)

    @pytest.mark.asyncio
    async def test_delete_from_servers_never_raises(self, client, server):
        server.down.add("a.example")
        auth = await client.create_delete_auth(SHA)
        results = await client.delete_from_servers(
            ["https://a.example", "https://b.example"], SHA, auth
        )
        assert [r.ok for r in results] == [False, True]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_requires_open(self, sim_clock):
        c = BlossomClient(FakeSigner(), sim_clock)
        auth = await c.create_upload_auth(BLOB)
        with pytest.raises(RuntimeError, match="not opened"):
            await c.upload_blob("https://cdn.example", BLOB, auth)

    @pytest.mark.asyncio
    async def test_context_manager(self, sim_clock):
        async with BlossomClient(FakeSigner(), sim_clock) as c:
            assert c._client is not None
        assert c._client is None
