"""
Integration tests for SignedApiClient against a fake transport.

Covers the signed request pipeline, network retries and the single-flight
token refresh including queued requests.
"""

import asyncio
import json

import pytest

from signed_client.api.client import SignedApiClient
from signed_client.api.multipart import MultipartBody, UploadFile
from signed_client.config.model import ClientSettings
from signed_client.constants import ACCESS_TOKEN_KEY, DEVICE_ID_KEY, REFRESH_TOKEN_KEY
from signed_client.errors.internal import (
    AuthExpiredError,
    ConfigurationError,
    NetworkError,
    ParsingError,
    UpstreamError,
)
from signed_client.signing.canonical import extract_path_with_query, normalize_path_with_query
from signed_client.signing.signer import verify_signature
from signed_client.storage.secure_store import MemorySecureStore

from tests.fixtures.transport_fixtures import FakeTransport, json_response, wait_until

TEST_SECRET = "test-shared-secret"


def make_client(settings, store, handler, **kwargs):
    transport = FakeTransport(handler)
    return SignedApiClient(settings, store=store, transport=transport, **kwargs), transport


def is_refresh(request):
    return request.url.endswith("/auth/refresh")


class TestSignedPipeline:
    """Headers and signatures on outgoing requests."""

    @pytest.mark.asyncio
    async def test_post_signature_verifies_over_transmitted_bytes(self, settings, store):
        """Test a backend verifier accepts the signature computed from what was sent."""
        # Arrange
        client, transport = make_client(settings, store, lambda r: json_response(200, {"ok": True}))

        # Act
        result = await client.post("/items", {"x": 1})

        # Assert
        assert result == {"ok": True}
        sent = transport.sent[0]
        assert sent.body == '{"x":1}'
        path = normalize_path_with_query(extract_path_with_query(sent.url))
        assert verify_signature(
            TEST_SECRET,
            sent.headers["X-Signature"],
            sent.method,
            path,
            sent.body,
            sent.headers["X-Device-Id"],
            sent.headers["X-Timestamp"],
            sent.headers["X-Nonce"],
        )

    @pytest.mark.asyncio
    async def test_query_sent_in_canonical_order(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(200, []))

        await client.get("/items?b=2&a=1")

        assert transport.sent[0].url == "https://api.example.com/items?a=1&b=2"

    @pytest.mark.asyncio
    async def test_unauthenticated_request_still_signed(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(200, {}))

        await client.get("/public")

        headers = transport.sent[0].headers
        assert "Authorization" not in headers
        assert headers["Content-Type"] == "application/json"
        for name in ("X-Device-Id", "X-Timestamp", "X-Nonce", "X-Signature"):
            assert headers[name]

    @pytest.mark.asyncio
    async def test_bearer_and_app_headers(self, store):
        settings = ClientSettings(
            base_url="https://api.example.com",
            shared_secret=TEST_SECRET,
            app_id="mobile",
            bypass_token="preview-bypass",
        )
        await store.set(ACCESS_TOKEN_KEY, "tok-1")
        client, transport = make_client(settings, store, lambda r: json_response(200, {}))

        await client.get("/me")

        headers = transport.sent[0].headers
        assert headers["Authorization"] == "Bearer tok-1"
        assert headers["X-App-Id"] == "mobile"
        assert headers["x-vercel-protection-bypass"] == "preview-bypass"

    @pytest.mark.asyncio
    async def test_device_id_stable_across_requests(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(200, {}))

        await client.get("/a")
        await client.get("/b")

        ids = {sent.headers["X-Device-Id"] for sent in transport.sent}
        assert len(ids) == 1
        assert store.snapshot()[DEVICE_ID_KEY] in ids

    @pytest.mark.asyncio
    async def test_missing_secret_fails_before_any_request(self, store):
        """Test construction fails fast without a signing secret."""
        settings = ClientSettings.model_construct(shared_secret="", base_url="https://api.example.com")
        transport = FakeTransport(lambda r: pytest.fail("no request expected"))

        with pytest.raises(ConfigurationError):
            SignedApiClient(settings, store=store, transport=transport)

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_error_status_raises_upstream_error(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(404, {"error": "nope"}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.get("/missing")

        assert exc_info.value.status == 404
        assert json.loads(exc_info.value.body) == {"error": "nope"}
        assert len(transport.sent) == 1


class TestNetworkRetries:
    """Retry behaviour when no response is received."""

    @pytest.mark.asyncio
    async def test_unreachable_backend_tried_four_times(self, store):
        """Test 1 + 3 attempts with the configured delay, then NetworkError."""
        # Arrange
        settings = ClientSettings(
            base_url="https://api.example.com", shared_secret=TEST_SECRET, retry_delay_ms=1000
        )
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        client, transport = make_client(
            settings, store, lambda r: NetworkError("connection refused"), sleep=fake_sleep
        )

        # Act
        with pytest.raises(NetworkError):
            await client.get("/items")

        # Assert
        assert len(transport.sent) == 4
        assert delays == [1.0, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_each_retry_is_freshly_signed(self, settings, store):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return NetworkError("blip")
            return json_response(200, {"ok": True})

        client, transport = make_client(settings, store, handler)

        assert await client.get("/items") == {"ok": True}
        nonces = {sent.headers["X-Nonce"] for sent in transport.sent}
        assert len(nonces) == 3

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(500))

        with pytest.raises(UpstreamError):
            await client.get("/items")

        assert len(transport.sent) == 1


class TestTokenRefresh:
    """401 handling through the refresh coordinator."""

    def setup_method(self):
        """Setup method called before each test."""
        self.store = MemorySecureStore({ACCESS_TOKEN_KEY: "stale", REFRESH_TOKEN_KEY: "refresh-1"})
        self.refresh_gate = asyncio.Event()
        self.refresh_response = json_response(200, {"accessToken": "fresh"})

    async def handler(self, request):
        if is_refresh(request):
            await self.refresh_gate.wait()
            return self.refresh_response
        if request.headers.get("Authorization") == "Bearer fresh":
            return json_response(200, {"path": request.url})
        return json_response(401, {"error": "expired"})

    @pytest.mark.asyncio
    async def test_queued_request_replayed_after_refresh(self, settings):
        """Test two requests hitting 401 share one refresh and both succeed."""
        # Arrange
        client, transport = make_client(settings, self.store, self.handler)

        # Act
        first = asyncio.create_task(client.get("/a"))
        await wait_until(lambda: client.refresh_coordinator.is_refreshing)
        second = asyncio.create_task(client.get("/b"))
        await wait_until(lambda: client.refresh_coordinator.pending_count == 1)
        self.refresh_gate.set()
        results = await asyncio.gather(first, second)

        # Assert
        assert [r["path"] for r in results] == [
            "https://api.example.com/a",
            "https://api.example.com/b",
        ]
        assert len(transport.sent_to("/auth/refresh")) == 1
        assert self.store.snapshot()[ACCESS_TOKEN_KEY] == "fresh"
        assert self.store.snapshot()[REFRESH_TOKEN_KEY] == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_request_body_and_signing(self, settings):
        self.refresh_gate.set()
        client, transport = make_client(settings, self.store, self.handler)

        await client.get("/a")

        refresh = transport.sent_to("/auth/refresh")[0]
        assert refresh.method == "POST"
        assert json.loads(refresh.body) == {"refreshToken": "refresh-1"}
        assert refresh.headers["X-Signature"]

    @pytest.mark.asyncio
    async def test_replay_is_resigned(self, settings):
        self.refresh_gate.set()
        client, transport = make_client(settings, self.store, self.handler)

        await client.get("/a")

        attempts = transport.sent_to("/a")
        assert len(attempts) == 2
        assert attempts[0].headers["X-Nonce"] != attempts[1].headers["X-Nonce"]
        assert attempts[1].headers["Authorization"] == "Bearer fresh"

    @pytest.mark.asyncio
    async def test_refresh_failure_clears_tokens_and_rejects_queue(self, settings):
        """Test a failed refresh logs the session out and fails every waiter."""
        # Arrange
        self.refresh_response = json_response(500, {"error": "down"})
        client, transport = make_client(settings, self.store, self.handler)

        # Act
        first = asyncio.create_task(client.get("/a"))
        await wait_until(lambda: client.refresh_coordinator.is_refreshing)
        second = asyncio.create_task(client.get("/b"))
        await wait_until(lambda: client.refresh_coordinator.pending_count == 1)
        self.refresh_gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        # Assert
        assert all(isinstance(r, AuthExpiredError) for r in results)
        assert ACCESS_TOKEN_KEY not in self.store.snapshot()
        assert REFRESH_TOKEN_KEY not in self.store.snapshot()
        assert await client.is_authenticated() is False
        assert len(transport.sent_to("/b")) == 1
        assert results[0] is not results[1]
        assert [r.unauthorized.status for r in results] == [401, 401]
        assert [r.unauthorized.data for r in results] == [{"status": 401}, {"status": 401}]
        assert all(isinstance(r.__cause__, UpstreamError) for r in results)

    @pytest.mark.asyncio
    async def test_refresh_endpoint_401_fails_instead_of_waiting(self, settings):
        self.refresh_response = json_response(401, {"error": "revoked"})
        self.refresh_gate.set()
        client, transport = make_client(settings, self.store, self.handler)

        with pytest.raises(AuthExpiredError):
            await client.get("/a")

        assert len(transport.sent_to("/auth/refresh")) == 1
        assert client.refresh_coordinator.pending_count == 0

    @pytest.mark.asyncio
    async def test_second_401_after_replay_is_surfaced(self, settings):
        """Test a request is refreshed at most once."""
        self.refresh_gate.set()
        self.refresh_response = json_response(200, {"accessToken": "still-bad"})
        client, transport = make_client(settings, self.store, self.handler)

        with pytest.raises(UpstreamError) as exc_info:
            await client.get("/a")

        assert exc_info.value.status == 401
        assert len(transport.sent_to("/auth/refresh")) == 1
        assert len(transport.sent_to("/a")) == 2

    @pytest.mark.asyncio
    async def test_no_refresh_token_gives_auth_expired(self, settings):
        store = MemorySecureStore({ACCESS_TOKEN_KEY: "stale"})
        client, transport = make_client(settings, store, self.handler)

        with pytest.raises(AuthExpiredError):
            await client.get("/a")

        assert transport.sent_to("/auth/refresh") == []
        assert ACCESS_TOKEN_KEY not in store.snapshot()

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_persisted(self, settings):
        self.refresh_gate.set()
        self.refresh_response = json_response(200, {"accessToken": "fresh", "refreshToken": "refresh-2"})
        client, _ = make_client(settings, self.store, self.handler)

        await client.get("/a")

        assert self.store.snapshot()[REFRESH_TOKEN_KEY] == "refresh-2"

    @pytest.mark.asyncio
    async def test_enveloped_refresh_payload_accepted(self, settings):
        self.refresh_gate.set()
        self.refresh_response = json_response(200, {"data": {"accessToken": "fresh"}})
        client, _ = make_client(settings, self.store, self.handler)

        assert await client.get("/a") == {"path": "https://api.example.com/a"}

    @pytest.mark.asyncio
    async def test_refresh_payload_without_token_fails(self, settings):
        self.refresh_gate.set()
        self.refresh_response = json_response(200, {"unexpected": True})
        client, _ = make_client(settings, self.store, self.handler)

        with pytest.raises(AuthExpiredError) as exc_info:
            await client.get("/a")

        assert isinstance(exc_info.value.__cause__, ParsingError)
        assert ACCESS_TOKEN_KEY not in self.store.snapshot()
        assert REFRESH_TOKEN_KEY not in self.store.snapshot()

    @pytest.mark.asyncio
    async def test_many_concurrent_401s_single_refresh(self, settings):
        client, transport = make_client(settings, self.store, self.handler)

        tasks = [asyncio.create_task(client.get(f"/r/{i}")) for i in range(10)]
        await wait_until(lambda: client.refresh_coordinator.pending_count == 9)
        self.refresh_gate.set()
        results = await asyncio.gather(*tasks)

        assert len(results) == 10
        assert len(transport.sent_to("/auth/refresh")) == 1


class TestUpload:
    """Multipart uploads through the signed pipeline."""

    @pytest.mark.asyncio
    async def test_upload_sends_signed_multipart(self, settings, store):
        """Test files and fields go out as multipart with a verifiable signature."""
        # Arrange
        client, transport = make_client(settings, store, lambda r: json_response(201, {"id": "f1"}))
        files = [UploadFile(b"\x89PNG", content_type="image/png", filename="a.png"), UploadFile(b"plain")]

        # Act
        result = await client.upload("/media?b=2&a=1", files, {"album": "trip"})

        # Assert
        assert result == {"id": "f1"}
        sent = transport.sent[0]
        assert sent.method == "POST"
        assert sent.url == "https://api.example.com/media?a=1&b=2"
        assert isinstance(sent.body, MultipartBody)
        assert sent.headers["Content-Type"] == sent.body.content_type
        assert sent.body.content_type.startswith("multipart/form-data; boundary=")
        assert b'filename="a.png"' in sent.body.content
        assert b'filename="file-1"' in sent.body.content
        assert b'name="album"' in sent.body.content
        assert verify_signature(
            TEST_SECRET,
            sent.headers["X-Signature"],
            "POST",
            "/media?a=1&b=2",
            "",
            sent.headers["X-Device-Id"],
            sent.headers["X-Timestamp"],
            sent.headers["X-Nonce"],
        )

    @pytest.mark.asyncio
    async def test_upload_replayed_after_refresh(self, settings):
        store = MemorySecureStore({ACCESS_TOKEN_KEY: "stale", REFRESH_TOKEN_KEY: "refresh-1"})

        def handler(request):
            if is_refresh(request):
                return json_response(200, {"accessToken": "fresh"})
            if request.headers.get("Authorization") == "Bearer fresh":
                return json_response(201, {"stored": True})
            return json_response(401)

        client, transport = make_client(settings, store, handler)

        result = await client.upload("/media", [UploadFile(b"data")])

        assert result == {"stored": True}
        attempts = transport.sent_to("/media")
        assert len(attempts) == 2
        assert attempts[0].body is attempts[1].body
        assert attempts[1].headers["Content-Type"].startswith("multipart/form-data")


class TestClientHelpers:
    """URL building, verbs and session helpers."""

    def test_build_url_joins_base_and_params(self, settings, store):
        client, _ = make_client(settings, store, lambda r: json_response(200))

        assert client.build_url("items") == "https://api.example.com/items"
        assert client.build_url("/items", {"b": 2, "a": None}) == "https://api.example.com/items?b=2"
        assert client.build_url("/items?x=1", {"tag": ["a", "b"]}) == "https://api.example.com/items?x=1&tag=a&tag=b"

    def test_build_url_keeps_absolute_endpoint(self, settings, store):
        client, _ = make_client(settings, store, lambda r: json_response(200))
        assert client.build_url("https://other.example.com/x") == "https://other.example.com/x"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verb,method", [("put", "PUT"), ("patch", "PATCH")])
    async def test_body_verbs(self, settings, store, verb, method):
        client, transport = make_client(settings, store, lambda r: json_response(200, {"done": True}))

        result = await getattr(client, verb)("/items/1", {"name": "n"})

        assert result == {"done": True}
        assert transport.sent[0].method == method
        assert transport.sent[0].body == '{"name":"n"}'

    @pytest.mark.asyncio
    async def test_delete_with_empty_response(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(204))

        assert await client.delete("/items/1", params={"hard": "true"}) is None
        assert transport.sent[0].method == "DELETE"
        assert transport.sent[0].url.endswith("/items/1?hard=true")
        assert transport.sent[0].body == ""

    @pytest.mark.asyncio
    async def test_auth_token_helpers(self, settings, store):
        client, _ = make_client(settings, store, lambda r: json_response(200))

        assert await client.is_authenticated() is False
        await client.set_auth_tokens("a", "r")
        assert await client.is_authenticated() is True
        await client.clear_auth_tokens()
        assert await client.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, settings, store):
        client, transport = make_client(settings, store, lambda r: json_response(200))

        async with client:
            pass

        assert transport.closed is True

    def test_from_env(self, store):
        client = SignedApiClient.from_env(
            {"API_SHARED_SECRET": "env-secret", "API_BASE_URL": "https://env.example.com/"},
            store=store,
            transport=FakeTransport(lambda r: json_response(200)),
        )
        assert client.settings.base_url == "https://env.example.com"

    def test_from_env_without_secret(self):
        with pytest.raises(ConfigurationError):
            SignedApiClient.from_env({}, store=MemorySecureStore())
