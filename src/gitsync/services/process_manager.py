"""Async client for the external process manager's JSON API.

Endpoints:
- POST /api/restart-script/{name}
- POST /api/stop-script/{name}
- POST /api/start-script/{name}
- POST /api/add-script
- GET  /api/scripts

Every response has the shape ``{success, message | error}``. Calls send
``X-API-Key`` when a key is configured.
"""

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from gitsync.core.exceptions import LifecycleError
from gitsync.schemas.deployment_config import ProcessManagerConfig, RegisterScript

logger = logging.getLogger(__name__)


class ProcessManager(Protocol):
    """Process-manager collaborator, used as an async context manager."""

    async def __aenter__(self) -> "ProcessManager": ...

    async def __aexit__(self, *args: Any) -> None: ...

    async def stop_script(self, name: str) -> str:
        """Stop a script. Returns the manager's message, raises LifecycleError."""
        ...

    async def restart_script(self, name: str) -> str:
        """Restart a script. Returns the manager's message, raises LifecycleError."""
        ...

    async def add_script(self, script: RegisterScript) -> str:
        """Register a script. Returns the manager's message, raises LifecycleError."""
        ...

    async def ping(self) -> bool:
        """Return True when the manager is reachable. Never raises."""
        ...


class ProcessManagerClient:
    """
    Client for one process-manager endpoint.

    Use as an async context manager; the underlying HTTP client lives for
    the duration of the ``async with`` block.
    """

    def __init__(
        self,
        config: ProcessManagerConfig,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Endpoint URL and optional API key
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ProcessManagerClient":
        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            headers=self._build_headers(),
            timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        script: str,
        action: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("ProcessManagerClient must be used inside 'async with'")

        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.error(
                "Process manager request failed",
                extra={"action": action, "script": script, "error": str(e)},
            )
            raise LifecycleError(f"Process manager request failed: {e}", script, action) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_success and data.get("success"):
            return data

        error = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
        logger.warning(
            "Process manager rejected request",
            extra={
                "action": action,
                "script": script,
                "status_code": response.status_code,
                "error": error,
            },
        )
        raise LifecycleError(str(error), script, action)

    async def restart_script(self, name: str) -> str:
        data = await self._request(
            "POST", f"/api/restart-script/{quote(name, safe='')}", script=name, action="restart"
        )
        logger.info("Script restarted", extra={"script": name})
        return str(data.get("message") or "restarted")

    async def stop_script(self, name: str) -> str:
        data = await self._request(
            "POST", f"/api/stop-script/{quote(name, safe='')}", script=name, action="stop"
        )
        logger.info("Script stopped", extra={"script": name})
        return str(data.get("message") or "stopped")

    async def start_script(self, name: str) -> str:
        data = await self._request(
            "POST", f"/api/start-script/{quote(name, safe='')}", script=name, action="start"
        )
        logger.info("Script started", extra={"script": name})
        return str(data.get("message") or "started")

    async def add_script(self, script: RegisterScript) -> str:
        data = await self._request(
            "POST",
            "/api/add-script",
            script=script.name,
            action="register",
            json=script.to_payload(),
        )
        logger.info("Script registered", extra={"script": script.name})
        return str(data.get("message") or "added")

    async def list_scripts(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/api/scripts", script="*", action="list")
        scripts = data.get("scripts") or []
        return scripts if isinstance(scripts, list) else []

    async def ping(self) -> bool:
        """Return True if the process manager answers the script listing."""
        try:
            await self.list_scripts()
        except LifecycleError:
            return False
        return True
