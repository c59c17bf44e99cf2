"""
Deploy Strategy Engine.

Tries an ordered list of deployment configurations against one hosting
provider until one reaches READY. Each failed configuration becomes a
DeployFailure; the last one is what the auto-fix loop works from.
"""

import logging
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from athenaflow.core.cancellation import CancellationToken, ensure_token
from athenaflow.core.deploy.base import (
    DeployFailure,
    DeploymentOutcome,
    DeployProvider,
    DeployResult,
    DeployState,
    DeployStrategyCandidate,
)
from athenaflow.core.deploy.strategies import (
    build_render_strategies,
    build_vercel_strategies,
    detect_framework,
    root_directory_candidates,
)
from athenaflow.core.errors import ConfigurationError, DeployAttemptError, OperationCancelled

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLLS = 120
DEFAULT_MAX_POLL_ERRORS = 3


class RepositoryReader(Protocol):
    async def list_paths(self, repository: str, branch: Optional[str] = None, cancel: Optional[CancellationToken] = None) -> List[str]: ...

    async def read_file(self, repository: str, path: str, branch: Optional[str] = None, cancel: Optional[CancellationToken] = None) -> Optional[str]: ...


class DeployStrategyEngine:
    def __init__(
        self,
        providers: Mapping[str, DeployProvider],
        repository: Optional[RepositoryReader] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        max_poll_errors: int = DEFAULT_MAX_POLL_ERRORS,
    ):
        self.providers = dict(providers)
        self.repository = repository
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.max_poll_errors = max_poll_errors

    def _provider(self, name: str) -> DeployProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise ConfigurationError(
                f"Deploy provider '{name}' is not configured.",
                setting=f"providers.{name}.api_key",
            )
        return provider

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def _root_candidates(self, repository: str, branch: str, token: CancellationToken) -> List[str]:
        if self.repository is None:
            return [""]
        paths = await self.repository.list_paths(repository, branch, cancel=token)
        return root_directory_candidates(paths)

    async def _detect_frameworks(self, repository: str, branch: str, roots: Sequence[str], token: CancellationToken) -> Dict[str, Optional[str]]:
        frameworks: Dict[str, Optional[str]] = {}
        if self.repository is None:
            return frameworks
        for root in roots:
            path = f"{root}/package.json" if root else "package.json"
            text = await self.repository.read_file(repository, path, branch, cancel=token)
            frameworks[root] = detect_framework(text)
        return frameworks

    async def build_candidates(
        self,
        provider: str,
        repository: str,
        branch: str,
        project_name: str,
        cancel: Optional[CancellationToken] = None,
    ) -> List[DeployStrategyCandidate]:
        token = ensure_token(cancel)
        roots = await self._root_candidates(repository, branch, token)
        if provider == "render":
            frameworks = await self._detect_frameworks(repository, branch, roots, token)
            return build_render_strategies(repository, project_name, branch, roots, frameworks)
        return build_vercel_strategies(repository, project_name, branch, roots)

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _poll(self, client: DeployProvider, started: DeploymentOutcome, token: CancellationToken) -> DeploymentOutcome:
        outcome = started
        polls = 0
        errors = 0
        while not outcome.state.is_terminal:
            if polls >= self.max_polls:
                raise DeployAttemptError(
                    f"Timed out waiting for deployment {started.id} after {polls} polls"
                )
            await token.sleep(self.poll_interval)
            polls += 1
            try:
                latest = await token.wait_for(client.get_status(started.id))
            except OperationCancelled:
                raise
            except Exception as e:
                errors += 1
                if errors > self.max_poll_errors:
                    raise
                logger.warning("Status check for deployment %s failed (%d/%d): %s", started.id, errors, self.max_poll_errors, e)
                continue
            errors = 0
            # Keep refs from the start response when the status call omits them.
            outcome = DeploymentOutcome(
                state=latest.state,
                id=latest.id or started.id,
                url=latest.url or started.url,
                diagnostics_ref=latest.diagnostics_ref or started.diagnostics_ref,
                logs_ref=latest.logs_ref or started.logs_ref,
                error_code=latest.error_code,
                error_message=latest.error_message,
                raw_status=latest.raw_status,
            )
            logger.debug("Deployment %s is %s", started.id, outcome.raw_status or outcome.state.value)
        return outcome

    async def run_deploy_attempt(
        self,
        provider: str,
        repository: str,
        branch: str,
        project_name: str,
        cancel: Optional[CancellationToken] = None,
        candidates: Optional[Sequence[DeployStrategyCandidate]] = None,
    ) -> DeployResult:
        """
        Try each candidate in order and stop at the first READY deployment.

        Errors from a single candidate are recorded and the next one is
        tried. Cancellation propagates and stops the whole attempt.
        """
        token = ensure_token(cancel)
        client = self._provider(provider)
        if candidates is None:
            candidates = await self.build_candidates(provider, repository, branch, project_name, token)

        failures: List[DeployFailure] = []
        for candidate in candidates:
            token.raise_if_cancelled()
            logger.info("Deploying %s to %s with strategy %s", repository, provider, candidate.label)

            started: Optional[DeploymentOutcome] = None
            try:
                started = await token.wait_for(client.start(candidate.body))
                logger.info("Deployment %s started (%s)", started.id, started.diagnostics_ref or "no inspector url")
                outcome = await self._poll(client, started, token)
            except OperationCancelled:
                raise
            except Exception as e:
                failure = DeployFailure(
                    provider=provider,
                    repository=repository,
                    branch=branch,
                    project_name=project_name,
                    strategy_label=candidate.label,
                    deployment_id=started.id if started else None,
                    diagnostics_ref=started.diagnostics_ref if started else None,
                    logs_ref=started.logs_ref if started else None,
                    error_message=str(e) or type(e).__name__,
                )
                failures.append(failure)
                logger.warning("Strategy %s failed: %s", candidate.label, failure.error_message)
                continue

            if outcome.state == DeployState.READY:
                logger.info("Deployment %s is ready at %s", outcome.id, outcome.url)
                return DeployResult(ok=True, outcome=outcome, failures=failures)

            failure = DeployFailure(
                provider=provider,
                repository=repository,
                branch=branch,
                project_name=project_name,
                strategy_label=candidate.label,
                deployment_id=outcome.id,
                diagnostics_ref=outcome.diagnostics_ref,
                logs_ref=outcome.logs_ref,
                error_code=outcome.error_code,
                error_message=outcome.error_message,
                state=outcome.raw_status or outcome.state.value,
            )
            failures.append(failure)
            logger.warning("Strategy %s failed: %s", candidate.label, failure.detail())

        return DeployResult(ok=False, failure=failures[-1] if failures else None, failures=failures)
