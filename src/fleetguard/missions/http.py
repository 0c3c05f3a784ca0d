"""HTTP client for a mission runner service."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from fleetguard.missions.base import BaseMissionRunner, MissionDispatchError, MissionSpec

logger = logging.getLogger("fleetguard.missions.http")


class HttpMissionRunner(BaseMissionRunner):
    """Talks to a mission runner over HTTP.

    Endpoints::

        POST {base_url}/api/missions                 -> {"id": "<mission id>"}
        POST {base_url}/api/missions/{id}/messages   -> 2xx

    Requests are not retried: starting a mission twice would run the agent
    twice.

    Args:
        base_url: Runner root URL.
        token: Bearer token. If omitted, read from the ``token_env`` variable.
        token_env: Environment variable holding the token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        token_env: str | None = "FLEETGUARD_MISSIONS_TOKEN",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Mission runner base_url must not be empty")
        if token is None and token_env:
            token = os.environ.get(token_env) or None

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def start_mission(self, spec: MissionSpec) -> str:
        body = spec.model_dump(mode="json")
        data = self._post("/api/missions", body)
        mission_id = data.get("id") if isinstance(data, dict) else None
        if not mission_id:
            raise MissionDispatchError("Mission runner response did not include a mission id")
        logger.info("Mission started: %s", spec.title, extra={"mission_id": mission_id})
        return str(mission_id)

    def send_message(self, mission_id: str, text: str) -> None:
        self._post(f"/api/missions/{mission_id}/messages", {"text": text})
        logger.info("Message sent to mission (%d chars)", len(text), extra={"mission_id": mission_id})

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: dict[str, Any]) -> Any:
        try:
            response = self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise MissionDispatchError(f"Mission runner unreachable at {self._base_url}: {e}") from e

        if response.status_code >= 400:
            raise MissionDispatchError(
                f"Mission runner returned HTTP {response.status_code} for {path}: "
                f"{response.text[:200]}"
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise MissionDispatchError(f"Mission runner returned invalid JSON for {path}") from e
