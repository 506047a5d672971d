"""
Tests for the switchboard GraphQL client.

Tests cover:
- Endpoint derivation from the configured URL
- Operation paging across page boundaries, with a pause before each follow-up page
- Error responses surfacing as TransportError
- Document type discovery from the mutation schema
"""

import httpx
import pytest

from phdsync.client import SwitchboardClient, _is_timeout_error, _retry_on_timeout, mutation_prefix_to_document_type
from phdsync.config import normalize_base_url
from phdsync.errors import TransportError
from phdsync.models import FileNode, FolderNode
from tests.fakes import make_operations


class TestEndpoints:
    """Base URLs are accepted with or without the /graphql suffix."""

    @pytest.mark.parametrize(
        "raw",
        [
            "https://sb.example.com",
            "https://sb.example.com/",
            "https://sb.example.com/graphql",
            "https://sb.example.com/graphql/",
            "https://sb.example.com/GraphQL//",
        ],
    )
    def test_normalize_base_url(self, raw):
        assert normalize_base_url(raw) == "https://sb.example.com"

    @pytest.mark.asyncio
    async def test_endpoints(self):
        async with SwitchboardClient("https://sb.example.com/graphql/") as client:
            assert client.graphql_endpoint == "https://sb.example.com/graphql"
            assert client.drive_endpoint("abc") == "https://sb.example.com/d/abc"

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"data": {"drives": []}})

        async with SwitchboardClient("http://sb.test", token="secret", transport=httpx.MockTransport(handler)) as client:
            assert await client.list_drives() == []
        assert seen == ["Bearer secret"]


class TestFetchDocument:
    """The full operation log is assembled page by page."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count, expected_requests", [(0, 1), (1, 1), (100, 2), (200, 3), (250, 3)])
    async def test_paging_request_counts(self, switchboard, count, expected_requests):
        switchboard.add_drive("drive-1", "Drive")
        switchboard.add_document("drive-1", "doc-1", "Doc", operations=make_operations(count))

        async with switchboard.client(page_size=100) as client:
            document = await client.fetch_document("drive-1", "doc-1")

        assert len(switchboard.requests_of("document")) == expected_requests
        assert [op.index for op in document.operations] == list(range(count))
        assert [op.id for op in document.operations] == [f"op-{i}" for i in range(count)]

    @pytest.mark.asyncio
    async def test_page_offsets(self, switchboard):
        switchboard.add_drive("drive-1", "Drive")
        switchboard.add_document("drive-1", "doc-1", "Doc", operations=make_operations(250))

        async with switchboard.client(page_size=100) as client:
            await client.fetch_document("drive-1", "doc-1")

        assert [v["skip"] for v in switchboard.requests_of("document")] == [0, 100, 200]
        assert all(v["first"] == 100 for v in switchboard.requests_of("document"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count, expected_sleeps", [(0, 0), (99, 0), (100, 1), (200, 2), (250, 2)])
    async def test_pauses_before_each_follow_up_page(self, switchboard, recorded_sleeps, count, expected_sleeps):
        switchboard.add_drive("drive-1", "Drive")
        switchboard.add_document("drive-1", "doc-1", "Doc", operations=make_operations(count))

        async with switchboard.client(page_size=100, request_delay=0.5) as client:
            await client.fetch_document("drive-1", "doc-1")

        assert recorded_sleeps == [0.5] * expected_sleeps
        assert len(switchboard.requests_of("document")) == expected_sleeps + 1

    @pytest.mark.asyncio
    async def test_oversized_page_ends_paging(self):
        requests = []

        def handler(request):
            requests.append(request)
            document = {
                "id": "doc-1",
                "name": "Doc",
                "documentType": "powerhouse/demo-widget",
                "revision": 4,
                "operations": make_operations(4),
                "stateJSON": {},
            }
            return httpx.Response(200, json={"data": {"document": document}})

        async with SwitchboardClient(
            "http://sb.test", page_size=2, request_delay=0.0, transport=httpx.MockTransport(handler)
        ) as client:
            document = await client.fetch_document("drive-1", "doc-1")

        assert len(requests) == 1
        assert [op.index for op in document.operations] == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_document_fields(self, switchboard):
        switchboard.add_drive("drive-1", "Drive")
        switchboard.add_document(
            "drive-1", "doc-1", "Doc", document_type="powerhouse/demo-widget", operations=make_operations(3)
        )

        async with switchboard.client() as client:
            document = await client.fetch_document("drive-1", "doc-1")

        assert document.id == "doc-1"
        assert document.name == "Doc"
        assert document.document_type == "powerhouse/demo-widget"
        assert document.revision == 3
        assert document.state == {"field0": 0, "field1": 1, "field2": 2}
        assert document.operations[0].skip is None
        assert document.operations[1].skip == 0
        assert switchboard.requests[0][0] == "/d/drive-1"

    @pytest.mark.asyncio
    async def test_graphql_error_raises(self, switchboard):
        switchboard.add_drive("drive-1", "Drive")
        switchboard.add_document("drive-1", "doc-1", "Doc")
        switchboard.fail_documents.add("doc-1")

        async with switchboard.client() as client:
            with pytest.raises(TransportError, match="boom doc-1"):
                await client.fetch_document("drive-1", "doc-1")


class TestErrors:
    """Non-success responses never yield data."""

    @pytest.mark.asyncio
    async def test_http_error_includes_status_and_body(self, switchboard):
        async with switchboard.client() as client:
            with pytest.raises(TransportError) as excinfo:
                await client.fetch_drive("nope")

        assert excinfo.value.status_code == 500
        assert "500" in str(excinfo.value)
        assert "unknown drive nope" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_long_body_truncated(self):
        def handler(request):
            return httpx.Response(502, text="x" * 2000)

        async with SwitchboardClient("http://sb.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError) as excinfo:
                await client.list_drives()

        message = str(excinfo.value)
        assert "x" * 500 in message
        assert "x" * 501 not in message

    @pytest.mark.asyncio
    async def test_missing_data_raises(self):
        def handler(request):
            return httpx.Response(200, json={"data": None})

        async with SwitchboardClient("http://sb.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="No data returned"):
                await client.list_drives()

    @pytest.mark.asyncio
    async def test_malformed_json_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        async with SwitchboardClient("http://sb.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="Malformed JSON"):
                await client.list_drives()

    @pytest.mark.asyncio
    async def test_request_count(self, switchboard):
        switchboard.add_drive("drive-1", "Drive")
        async with switchboard.client() as client:
            await client.list_drives()
            await client.fetch_drive("drive-1")
            assert client.request_count == 2


class TestRetry:
    """Timeouts are retried with backoff; other errors are not."""

    def test_timeout_detected_through_cause(self):
        try:
            try:
                raise httpx.ReadTimeout("slow")
            except httpx.ReadTimeout as inner:
                raise TransportError("wrapped") from inner
        except TransportError as exc:
            assert _is_timeout_error(exc)

        assert not _is_timeout_error(ValueError("nope"))

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr("phdsync.client.asyncio.sleep", fake_sleep)
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectTimeout("timeout")
            return "ok"

        assert await _retry_on_timeout(flaky, operation="test") == "ok"
        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, monkeypatch):
        async def fake_sleep(seconds):
            return None

        monkeypatch.setattr("phdsync.client.asyncio.sleep", fake_sleep)

        async def always_timeout():
            raise httpx.ReadTimeout("timeout")

        with pytest.raises(httpx.ReadTimeout):
            await _retry_on_timeout(always_timeout, operation="test", max_attempts=2)

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await _retry_on_timeout(broken, operation="test")
        assert len(attempts) == 1


class TestDrives:
    @pytest.mark.asyncio
    async def test_list_drives(self, switchboard):
        switchboard.add_drive("drive-1", "One")
        switchboard.add_drive("drive-2", "Two")

        async with switchboard.client() as client:
            assert await client.list_drives() == ["drive-1", "drive-2"]
        assert switchboard.requests[0][0] == "/graphql"

    @pytest.mark.asyncio
    async def test_fetch_drive_nodes(self, switchboard):
        switchboard.add_drive("drive-1", "One", slug="one")
        switchboard.add_folder("drive-1", "f1", "Folder")
        switchboard.add_document("drive-1", "doc-1", "Doc", parent="f1")

        async with switchboard.client() as client:
            info, nodes = await client.fetch_drive("drive-1")

        assert info.name == "One"
        assert info.slug == "one"
        assert nodes == [
            FolderNode(id="f1", name="Folder"),
            FileNode(id="doc-1", name="Doc", document_type="powerhouse/demo-widget", parent_folder="f1"),
        ]


class TestDocumentTypes:
    """Creatable document types come from `<Prefix>_createDocument` mutations."""

    @pytest.mark.parametrize(
        "prefix, expected",
        [
            ("ResourceTemplate", "powerhouse/resource-template"),
            ("DemoWidget", "powerhouse/demo-widget"),
            ("Budget", "powerhouse/budget"),
        ],
    )
    def test_prefix_to_type(self, prefix, expected):
        assert mutation_prefix_to_document_type(prefix) == expected

    @pytest.mark.asyncio
    async def test_discover(self, switchboard):
        async with switchboard.client() as client:
            catalog = await client.discover_document_types()

        assert catalog == {
            "powerhouse/demo-widget": "DemoWidget",
            "powerhouse/resource-template": "ResourceTemplate",
        }

    @pytest.mark.asyncio
    async def test_create_document(self, switchboard):
        async with switchboard.client() as client:
            document_id = await client.create_document("DemoWidget", "New", "drive-1")

        assert document_id == "new-doc-1"
        assert switchboard.requests_of("create") == [{"name": "New", "driveId": "drive-1"}]
