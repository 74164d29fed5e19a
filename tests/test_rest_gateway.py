"""Tests for the PostgREST-backed remote gateway."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from teamsync.checkpoint import Checkpoint
from teamsync.errors import Rejected, Unknown, Unreachable
from teamsync.remote import RestClient
from teamsync.remote.rest import classify_response, cursor_filter
from teamsync.sync import ConnectivityMonitor


def response(status, body=None):
    return httpx.Response(
        status,
        json=body if body is not None else [],
        request=httpx.Request("GET", "http://remote/rest/v1/tasks"),
    )


class TestCursorFilter:
    """Tests for the tuple-cursor predicate."""

    def test_filter_expression(self):
        """Test the or-filter combines the timestamp and id tie-break."""
        since = Checkpoint("2024-01-01T00:00:00+00:00", "task-9")

        assert cursor_filter(since) == (
            '(updated_at.gt."2024-01-01T00:00:00+00:00",'
            'and(updated_at.eq."2024-01-01T00:00:00+00:00",id.gt."task-9"))'
        )

    def test_quotes_escaped(self):
        """Test ids containing quotes are escaped."""
        assert 'id.gt."a\\"b"' in cursor_filter(Checkpoint("2024-01-01", 'a"b'))


class TestClassifyResponse:
    """Tests for mapping HTTP failures onto the error taxonomy."""

    def test_missing_table(self):
        """Test 42P01 names the missing table."""
        error = classify_response(
            "tasks", response(404, {"code": "42P01", "message": "relation does not exist"})
        )

        assert isinstance(error, Rejected)
        assert "does not exist" in str(error)
        assert error.code == "42P01"

    def test_policy_violation(self):
        """Test 42501 is reported as a policy violation."""
        error = classify_response("tasks", response(403, {"code": "42501", "message": "denied"}))

        assert isinstance(error, Rejected)
        assert "Policy violation" in str(error)

    def test_unauthorized(self):
        """Test 401 without a code is rejected."""
        assert isinstance(classify_response("tasks", response(401, {})), Rejected)

    def test_server_error_is_unknown(self):
        """Test 5xx responses are Unknown."""
        error = classify_response("tasks", response(500, {"message": "oops"}))

        assert isinstance(error, Unknown)
        assert error.code == "500"


class TestRestTableGateway:
    """Tests for RestTableGateway with a mocked HTTP client."""

    @pytest.fixture
    def connectivity(self):
        return ConnectivityMonitor()

    @pytest.fixture
    def client(self, connectivity):
        return RestClient("http://remote/", api_key="key", connectivity=connectivity)

    def test_client_initialization(self, client):
        """Test trailing slash is stripped."""
        assert client.base_url == "http://remote"
        assert client.table("tasks").path == "/rest/v1/tasks"

    @pytest.mark.asyncio
    async def test_query_params(self, client):
        """Test queries order by (updated_at, id) and filter after the checkpoint."""
        rows = [{"id": "a", "updated_at": "2024-01-02T00:00:00+00:00"}]
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=response(200, rows))
            mock_get.return_value = mock_http

            result = await client.table("tasks").query(
                Checkpoint("2024-01-01T00:00:00+00:00", "z"), 50
            )

            assert result == rows
            call_args = mock_http.request.call_args
            assert call_args[0] == ("GET", "/rest/v1/tasks")
            params = call_args[1]["params"]
            assert params["order"] == "updated_at.asc,id.asc"
            assert params["limit"] == "50"
            assert params["or"].startswith("(updated_at.gt.")

    @pytest.mark.asyncio
    async def test_query_from_epoch_has_no_filter(self, client):
        """Test a missing checkpoint sends no cursor predicate."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=response(200, []))
            mock_get.return_value = mock_http

            await client.table("tasks").query(None, 50)

            assert "or" not in mock_http.request.call_args[1]["params"]

    @pytest.mark.asyncio
    async def test_upsert_merges_on_id(self, client):
        """Test upserts ask the remote to merge duplicates by id."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=response(201, []))
            mock_get.return_value = mock_http

            await client.table("tasks").upsert([{"id": "a"}])

            call_args = mock_http.request.call_args
            assert call_args[0] == ("POST", "/rest/v1/tasks")
            assert call_args[1]["params"] == {"on_conflict": "id"}
            assert "merge-duplicates" in call_args[1]["headers"]["Prefer"]
            assert call_args[1]["json"] == [{"id": "a"}]

    @pytest.mark.asyncio
    async def test_upsert_empty_is_noop(self, client):
        """Test an empty batch sends nothing."""
        with patch.object(client, "_get_client") as mock_get:
            await client.table("tasks").upsert([])

            mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_is_unreachable(self, client, connectivity):
        """Test network failures raise Unreachable and mark the client offline."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
            mock_get.return_value = mock_http

            with pytest.raises(Unreachable):
                await client.table("tasks").query(None, 50)

        assert connectivity.is_online() is False

    @pytest.mark.asyncio
    async def test_success_marks_online(self, client, connectivity):
        """Test a successful request restores connectivity."""
        connectivity.set_online(False)
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=response(200, []))
            mock_get.return_value = mock_http

            await client.table("tasks").query(None, 50)

        assert connectivity.is_online() is True

    @pytest.mark.asyncio
    async def test_missing_table_rejected(self, client):
        """Test a schema mismatch raises Rejected."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(
                return_value=response(404, {"code": "42P01", "message": "missing"})
            )
            mock_get.return_value = mock_http

            with pytest.raises(Rejected, match="does not exist"):
                await client.table("tasks").query(None, 50)

    @pytest.mark.asyncio
    async def test_server_error_unknown(self, client):
        """Test 5xx responses raise Unknown."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=response(503, {}))
            mock_get.return_value = mock_http

            with pytest.raises(Unknown):
                await client.table("tasks").upsert([{"id": "a"}])

    @pytest.mark.asyncio
    async def test_health_check_success(self, client):
        """Test health check returns True when the API answers."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_response = MagicMock()
            mock_response.status_code = 200
            mock_http.get = AsyncMock(return_value=mock_response)
            mock_get.return_value = mock_http

            assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, client):
        """Test health check returns False when the remote is down."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
            mock_get.return_value = mock_http

            assert await client.health_check() is False

    def test_subscribe_without_feed(self, client):
        """Test subscribing without realtime returns a harmless release."""
        unsubscribe = client.table("tasks").subscribe_changes(lambda e: None)

        assert unsubscribe() is None

    def test_subscribe_delegates_to_feed(self, connectivity):
        """Test subscriptions go to the change feed by table name."""
        feed = MagicMock()
        client = RestClient("http://remote", change_feed=feed)
        callback = MagicMock()

        client.table("tasks").subscribe_changes(callback)

        feed.subscribe.assert_called_once_with("tasks", callback)
