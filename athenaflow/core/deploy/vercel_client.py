"""
Vercel deployment client (aiohttp).
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from athenaflow.core.deploy.base import DeploymentOutcome, DeployProvider, DeployState
from athenaflow.core.errors import ConfigurationError, DeployAttemptError

logger = logging.getLogger(__name__)

VERCEL_API = "https://api.vercel.com"

_READY_STATES = {"READY"}
_ERROR_STATES = {"ERROR", "CANCELED"}
_BUILDING_STATES = {"BUILDING", "INITIALIZING", "DEPLOYING"}

LOG_LIMIT = 2000


def map_vercel_state(raw: Optional[str]) -> DeployState:
    state = (raw or "").upper()
    if state in _READY_STATES:
        return DeployState.READY
    if state in _ERROR_STATES:
        return DeployState.ERROR
    if state in _BUILDING_STATES:
        return DeployState.BUILDING
    return DeployState.PENDING


def _https(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return url if url.startswith("http") else f"https://{url}"


class VercelDeployProvider(DeployProvider):
    """Starts git-sourced deployments and polls their readyState."""

    name = "vercel"

    def __init__(self, token: Optional[str], team_id: Optional[str] = None, base_url: str = VERCEL_API, timeout: float = 30):
        if not token:
            raise ConfigurationError(
                "Vercel is not configured. Set VERCEL_TOKEN in your environment (or providers.vercel.api_key).",
                setting="providers.vercel.api_key",
            )
        self.token = token
        self.team_id = team_id
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json_body: Any = None) -> Any:
        params = dict(params or {})
        if self.team_id:
            params["teamId"] = self.team_id
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, f"{self.base_url}{path}", params=params, json=json_body, headers=headers) as resp:
                    data = await resp.json(content_type=None)
                    if resp.status >= 400:
                        error = (data or {}).get("error") if isinstance(data, dict) else None
                        message = (error or {}).get("message") if isinstance(error, dict) else None
                        raise DeployAttemptError(f"Vercel API error {resp.status} on {path}: {message or data}")
                    return data
        except aiohttp.ClientError as e:
            raise DeployAttemptError(f"Network error talking to Vercel: {e}") from e
        except ValueError as e:
            raise DeployAttemptError(f"Vercel returned an unreadable response on {path}") from e

    def _outcome(self, data: Dict[str, Any]) -> DeploymentOutcome:
        raw = data.get("readyState") or data.get("status") or data.get("state")
        return DeploymentOutcome(
            state=map_vercel_state(raw),
            id=data.get("id") or data.get("uid"),
            url=_https(data.get("url")),
            diagnostics_ref=data.get("inspectorUrl"),
            error_code=data.get("errorCode"),
            error_message=data.get("errorMessage"),
            raw_status=raw,
        )

    async def start(self, body: Dict[str, Any]) -> DeploymentOutcome:
        repository = body["repository"]
        org, _, repo = repository.partition("/")
        payload: Dict[str, Any] = {
            "name": body["projectName"],
            "target": "production",
            "gitSource": {"type": "github", "org": org, "repo": repo, "ref": body.get("branch") or "main"},
        }
        if body.get("rootDirectory"):
            payload["projectSettings"] = {"rootDirectory": body["rootDirectory"]}

        logger.info("Starting Vercel deployment for %s (%s)", repository, body["projectName"])
        data = await self._request(
            "POST", "/v13/deployments",
            params={"skipAutoDetectionConfirmation": "1"},
            json_body=payload,
        )
        outcome = self._outcome(data)
        if not outcome.id:
            raise DeployAttemptError("Vercel did not return a deployment id")
        return outcome

    async def get_status(self, deployment_id: str) -> DeploymentOutcome:
        data = await self._request("GET", f"/v13/deployments/{deployment_id}")
        return self._outcome(data)

    async def fetch_logs(self, deployment_id: str) -> str:
        data = await self._request(
            "GET", f"/v3/deployments/{deployment_id}/events",
            params={"limit": str(LOG_LIMIT), "builds": "1"},
        )
        events = data if isinstance(data, list) else (data or {}).get("events", [])
        lines: List[str] = []
        for event in events:
            if not isinstance(event, dict):
                continue
            text = event.get("text") or (event.get("payload") or {}).get("text")
            if text:
                lines.append(str(text).rstrip())
        return "\n".join(lines)
