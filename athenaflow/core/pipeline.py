"""
Inbound facade.

Module-level entry points that wire the default collaborators
(environment credentials, aiohttp transport, GitHub applier, hosting
clients) and delegate to the gateway, the extractor, the deploy engine
and the auto-fix orchestrator. Callers that already own those
collaborators can pass them in instead.
"""

import logging
from typing import AsyncIterator, Dict, Optional, Sequence

from athenaflow.core.ai.attachments import NormalizedAttachment
from athenaflow.core.ai.base import ChatMessage
from athenaflow.core.ai.events import StreamEvent
from athenaflow.core.ai.factory import CredentialLookup
from athenaflow.core.ai.gateway import StreamingGateway
from athenaflow.core.autofix import AutoFixContext, AutoFixOrchestrator, AutoFixReport
from athenaflow.core.cancellation import CancellationToken
from athenaflow.core.change_block import ChangeSet
from athenaflow.core.change_block import extract_change_set as _extract_change_set
from athenaflow.core.change_block import strip_change_block as _strip_change_block
from athenaflow.core.deploy.base import DeployFailure, DeployProvider, DeployResult
from athenaflow.core.deploy.engine import DeployStrategyEngine
from athenaflow.core.deploy.render_client import RenderDeployProvider
from athenaflow.core.deploy.vercel_client import VercelDeployProvider
from athenaflow.core.errors import ConfigurationError
from athenaflow.core.github_client import GitHubClient, GitHubClientConfig, GitHubRepositoryApplier
from athenaflow.services.config_service import EnvironmentCredentials

logger = logging.getLogger(__name__)


# ============================================================
# Wiring
# ============================================================

def build_deploy_providers(credentials: CredentialLookup) -> Dict[str, DeployProvider]:
    """Hosting clients for every platform that has a credential."""
    providers: Dict[str, DeployProvider] = {}
    vercel_token = credentials("vercel", "api_key")
    if vercel_token:
        providers["vercel"] = VercelDeployProvider(vercel_token, team_id=credentials("vercel", "team_id"))
    render_key = credentials("render", "api_key")
    if render_key:
        providers["render"] = RenderDeployProvider(render_key, owner_id=credentials("render", "owner_id"))
    return providers


def build_applier(credentials: CredentialLookup) -> GitHubRepositoryApplier:
    token = credentials("github", "api_key")
    if not token:
        raise ConfigurationError(
            "GitHub is not configured. Set GITHUB_TOKEN in your environment (or providers.github.api_key).",
            setting="providers.github.api_key",
        )
    return GitHubRepositoryApplier(GitHubClient(GitHubClientConfig(token=token)))


def build_engine(
    credentials: Optional[CredentialLookup] = None,
    applier: Optional[GitHubRepositoryApplier] = None,
) -> DeployStrategyEngine:
    credentials = credentials or EnvironmentCredentials()
    if applier is None:
        try:
            applier = build_applier(credentials)
        except ConfigurationError as e:
            # Without repository metadata only the repo root is tried.
            logger.warning("%s", e)
    return DeployStrategyEngine(build_deploy_providers(credentials), repository=applier)


# ============================================================
# Entry points
# ============================================================

async def run_chat_turn(
    system_prompt: str,
    messages: Sequence[ChatMessage],
    attachments: Sequence[NormalizedAttachment] = (),
    model_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
    gateway: Optional[StreamingGateway] = None,
) -> AsyncIterator[StreamEvent]:
    gateway = gateway or StreamingGateway()
    async for event in gateway.run_chat_turn(
        system_prompt, messages, attachments, model_id, provider_id, cancel
    ):
        yield event


def extract_change_set(text: str) -> Optional[ChangeSet]:
    return _extract_change_set(text)


def strip_change_block(text: str, change_set: ChangeSet) -> str:
    return _strip_change_block(text, change_set)


async def run_deploy_attempt(
    provider: str,
    repository: str,
    branch: str,
    project_name: str,
    cancel: Optional[CancellationToken] = None,
    engine: Optional[DeployStrategyEngine] = None,
) -> DeployResult:
    engine = engine or build_engine()
    return await engine.run_deploy_attempt(provider, repository, branch, project_name, cancel=cancel)


async def run_auto_fix(
    initial_failure: DeployFailure,
    context: AutoFixContext,
    cancel: Optional[CancellationToken] = None,
    orchestrator: Optional[AutoFixOrchestrator] = None,
) -> AutoFixReport:
    if orchestrator is None:
        credentials = EnvironmentCredentials()
        applier = build_applier(credentials)
        orchestrator = AutoFixOrchestrator(
            StreamingGateway(credentials),
            applier,
            build_engine(credentials, applier),
        )
    return await orchestrator.run(initial_failure, context, cancel=cancel)
