"""Tests for the upstream Delta Sharing client."""

import json

import httpx
import pytest

from sharegate.schemas.delta_sharing import ChangesOptions, QueryOptions
from sharegate.services.delta_client import DeltaSharingClient, UpstreamProtocolError

pytestmark = pytest.mark.asyncio

BASE_URL = "http://upstream.test/delta-sharing"
TOKEN = "service-account-token"

METADATA_BODY = "\n".join(
    [
        json.dumps({"protocol": {"minReaderVersion": 1}}),
        json.dumps(
            {
                "metaData": {
                    "id": "tbl-1",
                    "format": {"provider": "parquet"},
                    "schemaString": '{"type":"struct","fields":[]}',
                    "partitionColumns": [],
                }
            }
        ),
    ]
)


async def _token() -> str:
    return TOKEN


def _client(handler) -> tuple[DeltaSharingClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return DeltaSharingClient(BASE_URL, _token, http_client=http), seen


class TestListings:
    async def test_list_shares_sends_bearer_and_paging(self):
        client, seen = _client(
            lambda request: httpx.Response(
                200, json={"items": [{"name": "acme", "id": "s-1"}], "nextPageToken": "n"}
            )
        )

        page = await client.list_shares(max_results=5, page_token="tok")

        assert [s.name for s in page.items] == ["acme"]
        assert page.next_page_token == "n"
        request = seen[0]
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.url.path == "/delta-sharing/shares"
        assert request.url.params["maxResults"] == "5"
        assert request.url.params["pageToken"] == "tok"

    async def test_path_segments_are_escaped(self):
        client, seen = _client(lambda request: httpx.Response(200, json={"items": []}))

        await client.list_tables("my share", "a/b")

        assert seen[0].url.raw_path.startswith(b"/delta-sharing/shares/my%20share/schemas/a%2Fb/tables")

    async def test_get_share_unwraps(self):
        client, _ = _client(lambda request: httpx.Response(200, json={"share": {"name": "acme"}}))
        assert (await client.get_share("acme")).name == "acme"


class TestTables:
    async def test_version_header(self):
        client, _ = _client(
            lambda request: httpx.Response(200, headers={"Delta-Table-Version": "12"})
        )
        assert await client.get_table_version("acme", "sales", "orders") == 12

    async def test_missing_version_header(self):
        client, _ = _client(lambda request: httpx.Response(200))
        with pytest.raises(UpstreamProtocolError):
            await client.get_table_version("acme", "sales", "orders")

    async def test_metadata(self):
        client, seen = _client(
            lambda request: httpx.Response(
                200, text=METADATA_BODY, headers={"Delta-Table-Version": "4"}
            )
        )

        result = await client.get_table_metadata("acme", "sales", "orders")

        assert result.metadata.id == "tbl-1"
        assert result.version == 4
        assert seen[0].headers["Accept"] == "application/x-ndjson"

    async def test_query_posts_encoded_body(self):
        client, seen = _client(lambda request: httpx.Response(200, text=METADATA_BODY))

        await client.query_table("acme", "sales", "orders", QueryOptions(limit_hint=7))

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/tables/orders/query")
        assert json.loads(request.content) == {"limitHint": 7, "predicateHints": []}

    async def test_changes_use_query_params(self):
        client, seen = _client(
            lambda request: httpx.Response(
                200, text=json.dumps({"add": {"url": "u", "id": "f", "size": 1}})
            )
        )

        result = await client.query_table_changes(
            "acme", "sales", "orders", ChangesOptions(starting_version=3)
        )

        assert result.actions[0].change_type == "add"
        request = seen[0]
        assert request.method == "GET"
        assert request.url.params["startingVersion"] == "3"


class TestErrors:
    async def test_non_2xx_raises_with_status(self):
        client, _ = _client(lambda request: httpx.Response(403, text="forbidden"))

        with pytest.raises(UpstreamProtocolError) as exc_info:
            await client.list_shares()
        assert exc_info.value.status == 403
        assert exc_info.value.body == "forbidden"

    async def test_connection_error_is_503(self):
        def _fail(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = _client(_fail)
        with pytest.raises(UpstreamProtocolError) as exc_info:
            await client.list_shares()
        assert exc_info.value.status == 503

    async def test_no_retry(self):
        client, seen = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(UpstreamProtocolError):
            await client.get_table_metadata("acme", "sales", "orders")
        assert len(seen) == 1


class TestFetchFile:
    async def test_fetch_file_without_auth(self):
        client, seen = _client(lambda request: httpx.Response(200, content=b"PAR1"))

        assert await client.fetch_file("https://storage.test/part-0.parquet?sig=abc") == b"PAR1"
        assert "Authorization" not in seen[0].headers

    async def test_fetch_file_error(self):
        client, _ = _client(lambda request: httpx.Response(404))
        with pytest.raises(UpstreamProtocolError):
            await client.fetch_file("https://storage.test/gone.parquet")
