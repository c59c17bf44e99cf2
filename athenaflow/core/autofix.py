"""
Auto-Fix Orchestrator

Closes the loop between a failed deployment and a committed fix:
fetch logs -> ask a model for FILE CHANGES -> commit -> redeploy,
for at most `max_rounds` rounds.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Collection, List, Mapping, Optional, Protocol, Sequence

from athenaflow.core.ai.base import ChatMessage
from athenaflow.core.cancellation import CancellationToken, ensure_token
from athenaflow.core.change_block import DEFAULT_COMMIT_MESSAGE, ChangeSet, extract_change_set
from athenaflow.core.deploy.base import DeployFailure, DeploymentOutcome
from athenaflow.core.deploy.engine import DeployStrategyEngine
from athenaflow.core.errors import AutoFixBudgetExceeded, AutoFixError, OperationCancelled
from athenaflow.core.github_client import CommitRef

logger = logging.getLogger(__name__)

MAX_DEPLOY_AUTOFIX_ROUNDS = 2
MAX_MODEL_CANDIDATES = 6
NO_LOGS_TEXT = "(No logs available.)"

DEFAULT_SYSTEM_PROMPT = "\n".join((
    "You are OS Athena, an expert AI assistant for web development.",
    "When asked to change files in the selected repository, end your response "
    "with a FILE CHANGES section in exactly this format:",
    "",
    "Commit message: <descriptive commit message>",
    "Branch: <branch name, optional>",
    "FILE: path/to/file.ext",
    "```language",
    "<COMPLETE file contents>",
    "```",
    "",
    "Always give complete file contents with repo-relative paths. Never use "
    "diffs, ellipses or placeholder comments.",
))


class ChatCompleter(Protocol):
    async def complete_chat_turn(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[Any] = (),
        model_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str: ...


class RepositoryApplier(Protocol):
    async def apply(
        self,
        repository: str,
        branch: Optional[str],
        message: str,
        files: Mapping[str, str],
        cancel: Optional[CancellationToken] = None,
    ) -> CommitRef: ...


@dataclass(frozen=True)
class ModelCandidate:
    model: str
    provider: str
    label: str

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model}"


@dataclass
class AutoFixContext:
    """What the caller knows about the user's model setup."""
    available_providers: Collection[str]
    selected_model: Optional[str] = None
    selected_provider: Optional[str] = None
    selected_label: Optional[str] = None
    openrouter_models: Sequence[str] = ()
    ollama_models: Sequence[str] = ()
    default_branch: Optional[str] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


@dataclass
class AutoFixRound:
    index: int
    failure: DeployFailure
    model_label: str
    commit: CommitRef
    redeploy_failure: Optional[DeployFailure] = None
    outcome: Optional[DeploymentOutcome] = None


@dataclass
class AutoFixReport:
    ok: bool
    rounds: List[AutoFixRound] = field(default_factory=list)
    outcome: Optional[DeploymentOutcome] = None


def build_model_candidates(context: AutoFixContext, limit: int = MAX_MODEL_CANDIDATES) -> List[ModelCandidate]:
    """
    Ordered models to ask for a fix: the user's selection first, then
    per-provider defaults, deduplicated by provider:model.
    """
    available = set(context.available_providers)
    candidates: List[ModelCandidate] = []
    seen = set()

    def push(model: str, provider: str, label: str) -> None:
        candidate = ModelCandidate(model, provider, label)
        if candidate.key in seen:
            return
        seen.add(candidate.key)
        candidates.append(candidate)

    if context.selected_model and context.selected_provider in available:
        push(context.selected_model, context.selected_provider, context.selected_label or context.selected_model)

    if "claude" in available:
        push("claude-sonnet-4", "claude", "Claude Sonnet 4")
        push("claude-3.5-haiku", "claude", "Claude 3.5 Haiku")

    if "openai" in available:
        push("gpt-4o-mini", "openai", "GPT-4o Mini")
        push("gpt-4o", "openai", "GPT-4o")

    if "groq" in available:
        push("llama-3.1-70b-versatile", "groq", "Groq (Llama 3.1 70B)")
        push("llama-3.1-8b-instant", "groq", "Groq (Llama 3.1 8B)")

    if "openrouter" in available:
        models = list(context.openrouter_models)
        preferred = (
            next((m for m in models if "coder" in m.lower()), None)
            or next((m for m in models if m.endswith(":free")), None)
            or (models[0] if models else None)
        )
        push(preferred or "qwen/qwen3-coder:free", "openrouter", preferred or "OpenRouter (Free)")

    if "ollama" in available and context.ollama_models:
        first = context.ollama_models[0]
        push(first, "ollama", f"Ollama ({first})")

    return candidates[:limit]


def build_fix_prompt(failure: DeployFailure, logs_text: str) -> str:
    provider_label = failure.provider_label
    lines = [
        f"A {provider_label} deployment is failing and must be fixed by committing changes to the GitHub repo.",
        "",
        f"Repo: {failure.repository}",
        f"Branch: {failure.branch}",
        f"Project: {failure.project_name}",
        f"Strategy: {failure.strategy_label}",
        f"Inspector: {failure.diagnostics_ref}" if failure.diagnostics_ref else None,
        f"Logs: {failure.logs_ref}" if failure.logs_ref else None,
        f"Error code: {failure.error_code}" if failure.error_code else None,
        f"Error message: {failure.error_message}" if failure.error_message else None,
        f"Deployment state: {failure.state}" if failure.state else None,
        "",
        f"{provider_label} build logs (recent):",
        logs_text or NO_LOGS_TEXT,
        "",
        "Task: Fix the cause of the deployment failure with the smallest safe changes.",
        "Rules:",
        "- Keep the explanation to 1-3 short sentences.",
        "- End your response with FILE CHANGES using COMPLETE file contents (no diffs/patches, no placeholders).",
        "- Do not include secrets. If an env var is missing, add validation + a clear error message and update docs.",
        "",
        "CONFIRMED: You are explicitly authorized to proceed and output FILE CHANGES now.",
    ]
    return "\n".join(line for line in lines if line is not None)


class AutoFixOrchestrator:
    def __init__(
        self,
        gateway: ChatCompleter,
        applier: RepositoryApplier,
        engine: DeployStrategyEngine,
        max_rounds: int = MAX_DEPLOY_AUTOFIX_ROUNDS,
    ):
        self.gateway = gateway
        self.applier = applier
        self.engine = engine
        self.max_rounds = max_rounds

    async def _fetch_logs(self, failure: DeployFailure, token: CancellationToken) -> str:
        if not failure.deployment_id:
            return ""
        provider = self.engine.providers.get(failure.provider)
        if provider is None:
            return ""
        try:
            return await token.wait_for(provider.fetch_logs(failure.deployment_id)) or ""
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning("Could not fetch logs for %s: %s", failure.deployment_id, e)
            return ""

    async def _generate_fix(self, prompt: str, context: AutoFixContext, token: CancellationToken):
        last_reason: Optional[str] = None
        for candidate in build_model_candidates(context):
            token.raise_if_cancelled()
            logger.info("Requesting deploy fix from %s", candidate.label)
            try:
                output = await self.gateway.complete_chat_turn(
                    context.system_prompt,
                    [ChatMessage(role="user", text=prompt)],
                    model_id=candidate.model,
                    provider_id=candidate.provider,
                    cancel=token,
                )
            except OperationCancelled:
                raise
            except Exception as e:
                last_reason = str(e) or "Failed to generate fix"
                logger.warning("%s failed to generate a fix: %s", candidate.label, last_reason)
                continue

            change_set = extract_change_set(output)
            if change_set is None:
                last_reason = f"{candidate.label} did not return FILE CHANGES."
                logger.warning("No change set: %s", last_reason)
                continue
            return candidate, change_set

        raise AutoFixError(last_reason or "Unable to generate a deploy fix with the available models.")

    @staticmethod
    def _commit_message(change_set: ChangeSet, failure: DeployFailure, round_index: int) -> str:
        if change_set.commit_message and change_set.commit_message != DEFAULT_COMMIT_MESSAGE:
            return change_set.commit_message
        return f"Fix {failure.provider_label} deploy (round {round_index})"

    async def run(
        self,
        initial_failure: DeployFailure,
        context: AutoFixContext,
        cancel: Optional[CancellationToken] = None,
    ) -> AutoFixReport:
        """
        Run fix rounds until a redeploy succeeds.

        Raises:
            AutoFixBudgetExceeded: every round was used and the deploy still fails
            AutoFixError: no model produced a change set, or redeploy gave no failure record
            ApplyError: the commit could not be written
            OperationCancelled: the token fired
        """
        token = ensure_token(cancel)
        failure = initial_failure
        rounds: List[AutoFixRound] = []

        while True:
            if len(rounds) >= self.max_rounds:
                raise AutoFixBudgetExceeded(
                    f"Auto-fix stopped after {self.max_rounds} attempts.",
                    last_failure=failure,
                    rounds=rounds,
                )
            round_index = len(rounds) + 1
            logger.info("Auto-fix round %s/%s for %s (%s)", round_index, self.max_rounds, failure.repository, failure.key)

            logs_text = await self._fetch_logs(failure, token)
            prompt = build_fix_prompt(failure, logs_text)
            try:
                candidate, change_set = await self._generate_fix(prompt, context, token)
            except AutoFixError as e:
                raise AutoFixError(str(e), last_failure=failure, rounds=rounds) from e

            branch = failure.branch or context.default_branch or "main"
            commit = await self.applier.apply(
                failure.repository,
                branch,
                self._commit_message(change_set, failure, round_index),
                change_set.files,
                cancel=token,
            )
            logger.info("Committed %s file(s) as %s", len(change_set.files), commit.sha)
            current = AutoFixRound(round_index, failure, candidate.label, commit)
            rounds.append(current)

            result = await self.engine.run_deploy_attempt(
                failure.provider,
                failure.repository,
                failure.branch,
                failure.project_name,
                cancel=token,
            )
            if result.ok:
                current.outcome = result.outcome
                logger.info("Deployment succeeded after auto-fix round %s", round_index)
                return AutoFixReport(ok=True, rounds=rounds, outcome=result.outcome)
            if result.failure is None:
                raise AutoFixError(result.error or "Deployment still failing.", last_failure=failure, rounds=rounds)

            current.redeploy_failure = result.failure
            failure = result.failure
