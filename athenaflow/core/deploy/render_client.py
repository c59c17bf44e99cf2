"""
Render deployment client (aiohttp).

Render deploys belong to a service, so the client finds (or creates)
the web service first and remembers which service each deploy id
belongs to for later status and log calls.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import aiohttp

from athenaflow.core.deploy.base import DeploymentOutcome, DeployProvider, DeployState
from athenaflow.core.errors import ConfigurationError, DeployAttemptError

logger = logging.getLogger(__name__)

RENDER_API = "https://api.render.com"
RENDER_DASHBOARD = "https://dashboard.render.com"

READY_STATUSES = {"live", "success", "succeeded", "deployed"}
ERROR_STATUSES = {"canceled", "cancelled", "deactivated"}

DEFAULT_LOG_LIMIT = 2000
MAX_LOG_LIMIT = 5000

# Finished deploys whose service id is kept for log lookups.
FINISHED_DEPLOYS_KEPT = 20


def map_render_status(raw: Optional[str]) -> DeployState:
    status = (raw or "").lower()
    if status in READY_STATUSES:
        return DeployState.READY
    if status.endswith("failed") or status in ERROR_STATUSES:
        return DeployState.ERROR
    if status.endswith("in_progress"):
        return DeployState.BUILDING
    return DeployState.PENDING


def clamp_log_limit(limit: Optional[int]) -> int:
    if not limit:
        return DEFAULT_LOG_LIMIT
    return min(MAX_LOG_LIMIT, max(1, int(limit)))


class RenderDeployProvider(DeployProvider):
    """Web-service deploys via the Render REST API."""

    name = "render"

    def __init__(self, api_key: Optional[str], owner_id: Optional[str] = None, base_url: str = RENDER_API, timeout: float = 30):
        if not api_key:
            raise ConfigurationError(
                "Render is not configured. Set RENDER_API_KEY in your environment (or providers.render.api_key).",
                setting="providers.render.api_key",
            )
        self.api_key = api_key
        self.owner_id = owner_id
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._deploy_services: Dict[str, str] = {}
        self._finished_services: "OrderedDict[str, str]" = OrderedDict()

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json_body: Any = None) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, f"{self.base_url}{path}", params=params, json=json_body, headers=headers) as resp:
                    text = await resp.text()
                    if resp.status >= 400:
                        raise DeployAttemptError(f"Render API error {resp.status} on {path}: {text[:500]}")
                    if not text.strip():
                        return None
                    return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise DeployAttemptError(f"Network error talking to Render: {e}") from e
        except ValueError as e:
            raise DeployAttemptError(f"Render returned an unreadable response on {path}") from e

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def _owner(self) -> str:
        if self.owner_id:
            return self.owner_id
        owners = await self._request("GET", "/v1/owners", params={"limit": "20"}) or []
        for entry in owners:
            owner = entry.get("owner") if isinstance(entry, dict) else None
            if owner and owner.get("id"):
                self.owner_id = owner["id"]
                return self.owner_id
        raise DeployAttemptError("No Render workspace is available for this API key")

    async def find_service(self, name: str) -> Optional[Dict[str, Any]]:
        results = await self._request("GET", "/v1/services", params={"name": name, "limit": "20"}) or []
        for entry in results:
            service = entry.get("service") if isinstance(entry, dict) else None
            if service and service.get("name") == name:
                return service
        return None

    async def _ensure_service(self, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["serviceName"]
        env_details = {"buildCommand": body["buildCommand"], "startCommand": body["startCommand"]}
        root = body.get("rootDirectory") or ""

        existing = await self.find_service(name)
        if existing:
            logger.info("Updating Render service %s (%s)", name, existing["id"])
            await self._request("PATCH", f"/v1/services/{existing['id']}", json_body={
                "branch": body["branch"],
                "rootDir": root,
                "serviceDetails": {"envSpecificDetails": env_details},
            })
            return existing

        logger.info("Creating Render service %s", name)
        created = await self._request("POST", "/v1/services", json_body={
            "type": "web_service",
            "name": name,
            "ownerId": await self._owner(),
            "repo": f"https://github.com/{body['repository']}",
            "branch": body["branch"],
            "rootDir": root,
            "autoDeploy": "yes",
            "serviceDetails": {
                "runtime": "node",
                "plan": "free",
                "envSpecificDetails": env_details,
            },
        })
        service = (created or {}).get("service") or created or {}
        if not service.get("id"):
            raise DeployAttemptError("Render did not return a service id")
        return service

    def _outcome(self, service_id: str, data: Dict[str, Any], service_url: Optional[str] = None) -> DeploymentOutcome:
        deploy_id = data.get("id")
        raw = data.get("status")
        dashboard = f"{RENDER_DASHBOARD}/web/{service_id}"
        state = map_render_status(raw)
        return DeploymentOutcome(
            state=state,
            id=deploy_id,
            url=service_url,
            diagnostics_ref=dashboard,
            logs_ref=f"{dashboard}/deploys/{deploy_id}" if deploy_id else None,
            error_message=f"status={raw}" if state == DeployState.ERROR else None,
            raw_status=raw,
        )

    # ------------------------------------------------------------------
    # DeployProvider
    # ------------------------------------------------------------------

    async def start(self, body: Dict[str, Any]) -> DeploymentOutcome:
        service = await self._ensure_service(body)
        service_id = service["id"]
        data = await self._request("POST", f"/v1/services/{service_id}/deploys", json_body={"clearCache": "do_not_clear"})
        if not data or not data.get("id"):
            raise DeployAttemptError("Render did not return a deploy id")
        self._deploy_services[data["id"]] = service_id
        service_url = (service.get("serviceDetails") or {}).get("url")
        return self._outcome(service_id, data, service_url)

    def _service_for(self, deployment_id: str) -> str:
        service_id = self._deploy_services.get(deployment_id) or self._finished_services.get(deployment_id)
        if not service_id:
            raise DeployAttemptError(f"Unknown Render deploy {deployment_id}")
        return service_id

    def _retire(self, deployment_id: str, service_id: str) -> None:
        self._deploy_services.pop(deployment_id, None)
        self._finished_services[deployment_id] = service_id
        self._finished_services.move_to_end(deployment_id)
        while len(self._finished_services) > FINISHED_DEPLOYS_KEPT:
            self._finished_services.popitem(last=False)

    async def get_status(self, deployment_id: str) -> DeploymentOutcome:
        service_id = self._service_for(deployment_id)
        data = await self._request("GET", f"/v1/services/{service_id}/deploys/{deployment_id}")
        outcome = self._outcome(service_id, data or {})
        if outcome.state.is_terminal:
            self._retire(deployment_id, service_id)
        return outcome

    async def fetch_logs(self, deployment_id: str, limit: Optional[int] = None) -> str:
        service_id = self._service_for(deployment_id)
        data = await self._request("GET", "/v1/logs", params={
            "ownerId": await self._owner(),
            "resource": service_id,
            "limit": str(clamp_log_limit(limit)),
            "direction": "backward",
        }) or {}
        entries = data.get("logs", []) if isinstance(data, dict) else data
        lines: List[str] = [str(e.get("message", "")).rstrip() for e in entries if isinstance(e, dict)]
        # Newest first from the API; show them in reading order.
        return "\n".join(reversed([line for line in lines if line]))
