"""Remote tables served by a PostgREST-compatible HTTP API."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..checkpoint import Checkpoint
from ..errors import Rejected, SyncError, Unknown, Unreachable
from .base import ChangeCallback, RemoteGateway, Row, Unsubscribe

if TYPE_CHECKING:
    from ..sync.connectivity import ConnectivityMonitor
    from .realtime import MQTTChangeFeed

logger = logging.getLogger(__name__)

# PostgREST / Postgres error codes that mean "fix the schema or policy"
MISSING_TABLE = "42P01"
POLICY_VIOLATION = "42501"

REJECTED_STATUSES = {400, 401, 403, 404, 406, 409, 422}


def cursor_filter(since: Checkpoint) -> str:
    """Build the tuple-cursor predicate for the ``or`` query parameter.

    ``(updated_at > T) OR (updated_at = T AND id > ID)``
    """
    ts = _quote(since.updated_at)
    row_id = _quote(since.id)
    return f"(updated_at.gt.{ts},and(updated_at.eq.{ts},id.gt.{row_id}))"


def _quote(value: str) -> str:
    # Timestamps contain reserved characters (':', '.', '+')
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def classify_response(table: str, response: httpx.Response) -> SyncError:
    """Turn a non-success HTTP response into a SyncError."""
    code = None
    message = response.text
    try:
        body = response.json()
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
    except ValueError:
        pass

    status = response.status_code
    if code == MISSING_TABLE:
        return Rejected(f"Table '{table}' does not exist on the remote", code=code)
    if code == POLICY_VIOLATION or status in (401, 403):
        return Rejected(
            f"Policy violation for '{table}'. Check row-level security policies. "
            f"({status}: {message})",
            code=code or str(status),
        )
    if status in REJECTED_STATUSES:
        return Rejected(f"HTTP {status} for '{table}': {message}", code=code or str(status))
    return Unknown(f"HTTP {status} for '{table}': {message}", code=code or str(status))


class RestClient:
    """Shared HTTP session for every table of one remote project."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        schema: str = "public",
        timeout: float = 30.0,
        connectivity: "ConnectivityMonitor | None" = None,
        change_feed: "MQTTChangeFeed | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the REST client.

        Args:
            base_url: Project URL (e.g., "https://xyz.supabase.co").
            api_key: Key sent as ``apikey`` and bearer token.
            schema: Database schema exposed by the API.
            timeout: Request timeout in seconds.
            connectivity: Monitor updated on every request outcome.
            change_feed: Optional realtime feed for table subscriptions.
            transport: Optional httpx transport (defaults to the network).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self.timeout = timeout
        self.connectivity = connectivity
        self.change_feed = change_feed
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {
                "Accept-Profile": self.schema,
                "Content-Profile": self.schema,
            }
            if self.api_key:
                headers["apikey"] = self.api_key
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def table(self, name: str) -> "RestTableGateway":
        return RestTableGateway(name, self)

    async def health_check(self) -> bool:
        """Check whether the API answers at all."""
        try:
            client = await self._get_client()
            response = await client.get("/rest/v1/")
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and classify every failure.

        Raises:
            Unreachable: No network path to the remote.
            Rejected: Authorization or schema problem.
            Unknown: Anything else.
        """
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            self._report(False)
            raise Unreachable(f"{method} {path} failed: {e}") from e
        except httpx.HTTPError as e:
            raise Unknown(f"{method} {path} failed: {e}") from e

        self._report(True)
        if response.is_success:
            return response
        raise classify_response(path.rsplit("/", 1)[-1], response)

    def _report(self, online: bool) -> None:
        if self.connectivity is not None:
            self.connectivity.set_online(online)


class RestTableGateway(RemoteGateway):
    """One remote table accessed through RestClient."""

    def __init__(self, table: str, client: RestClient):
        super().__init__(table)
        self.client = client

    @property
    def path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def query(self, since: Checkpoint | None, limit: int) -> list[Row]:
        params = {
            "select": "*",
            "order": "updated_at.asc,id.asc",
            "limit": str(limit),
        }
        if since is not None:
            params["or"] = cursor_filter(since)

        response = await self.client.request("GET", self.path, params=params)
        try:
            rows = response.json()
        except ValueError as e:
            raise Unknown(f"Invalid JSON from {self.table}: {e}") from e

        if rows:
            logger.debug(
                f"[{self.table}] Pulled {len(rows)} rows. "
                f"Range: {rows[0].get('updated_at')} -> {rows[-1].get('updated_at')}"
            )
        return rows

    async def upsert(self, rows: list[Row]) -> None:
        if not rows:
            return
        await self.client.request(
            "POST",
            self.path,
            params={"on_conflict": "id"},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug(f"[{self.table}] Upserted {len(rows)} rows")

    def subscribe_changes(self, callback: ChangeCallback) -> Unsubscribe:
        feed = self.client.change_feed
        if feed is None:
            logger.info(f"[{self.table}] Realtime disabled, relying on polling")
            return lambda: None
        return feed.subscribe(self.table, callback)
