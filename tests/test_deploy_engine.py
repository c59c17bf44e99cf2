"""
Tests for the Deploy Strategy Engine and provider state mapping:
- candidates run in order, stop at the first READY
- failures (error state, exceptions, timeouts) are recorded and skipped
- cancellation stops further candidates
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from athenaflow.core.cancellation import CancellationToken
from athenaflow.core.deploy.base import (
    DeployFailure,
    DeploymentOutcome,
    DeployProvider,
    DeployState,
    DeployStrategyCandidate,
)
from athenaflow.core.deploy.engine import DeployStrategyEngine
from athenaflow.core.deploy.render_client import (
    FINISHED_DEPLOYS_KEPT,
    RenderDeployProvider,
    clamp_log_limit,
    map_render_status,
)
from athenaflow.core.deploy.vercel_client import map_vercel_state
from athenaflow.core.errors import ConfigurationError, DeployAttemptError, OperationCancelled


# ---------------------------------------------------------------------------
# Helpers / Fakes
# ---------------------------------------------------------------------------

def run_async(coro):
    """Helper to run async coroutines inside plain pytest tests."""
    return asyncio.run(coro)


class FakeDeployProvider(DeployProvider):
    """
    Scripted provider. `plans` maps a candidate label to the sequence of
    states its deployment walks through, or to an exception raised by start().
    """

    name = "vercel"

    def __init__(self, plans: Dict[str, object]):
        self.plans = plans
        self.started: List[str] = []
        self.status_calls = 0
        self._walks: Dict[str, List[DeploymentOutcome]] = {}

    async def start(self, body):
        label = body["label"]
        self.started.append(label)
        plan = self.plans[label]
        if isinstance(plan, Exception):
            raise plan
        deployment_id = f"dpl_{len(self.started)}"
        walk = [
            DeploymentOutcome(
                state=state,
                id=deployment_id,
                url=f"https://{label}.example.app" if state == DeployState.READY else None,
                error_code="BUILD_FAILED" if state == DeployState.ERROR else None,
                error_message="Command failed" if state == DeployState.ERROR else None,
                raw_status=state.value.upper(),
            )
            for state in plan
        ]
        self._walks[deployment_id] = walk[1:] or walk
        first = walk[0]
        return DeploymentOutcome(
            state=first.state,
            id=deployment_id,
            diagnostics_ref=f"https://inspect/{deployment_id}",
            raw_status=first.raw_status,
        )

    async def get_status(self, deployment_id):
        self.status_calls += 1
        walk = self._walks[deployment_id]
        if len(walk) > 1:
            return walk.pop(0)
        return walk[0]

    async def fetch_logs(self, deployment_id):
        return f"logs for {deployment_id}"


def candidates(*labels: str) -> List[DeployStrategyCandidate]:
    return [DeployStrategyCandidate(label=label, body={"label": label}) for label in labels]


def make_engine(provider: DeployProvider, max_polls: int = 10, repository=None) -> DeployStrategyEngine:
    return DeployStrategyEngine({"vercel": provider}, repository=repository, poll_interval=0, max_polls=max_polls)


def attempt(engine: DeployStrategyEngine, cands: Optional[List[DeployStrategyCandidate]] = None, cancel=None):
    return run_async(engine.run_deploy_attempt("vercel", "octo/site", "main", "site", cancel=cancel, candidates=cands))


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def test_stops_at_first_ready_and_never_tries_later_candidates():
    provider = FakeDeployProvider({
        "A": [DeployState.PENDING, DeployState.BUILDING, DeployState.ERROR],
        "B": [DeployState.PENDING, DeployState.BUILDING, DeployState.READY],
        "C": [DeployState.READY],
    })

    result = attempt(make_engine(provider), candidates("A", "B", "C"))

    assert provider.started == ["A", "B"]
    assert result.ok is True
    assert result.outcome.url == "https://B.example.app"
    assert result.outcome.diagnostics_ref == "https://inspect/dpl_2"
    assert [f.strategy_label for f in result.failures] == ["A"]


def test_error_state_becomes_structured_failure():
    provider = FakeDeployProvider({"A": [DeployState.BUILDING, DeployState.ERROR]})

    result = attempt(make_engine(provider), candidates("A"))

    assert result.ok is False
    failure = result.failure
    assert isinstance(failure, DeployFailure)
    assert failure.deployment_id == "dpl_1"
    assert failure.diagnostics_ref == "https://inspect/dpl_1"
    assert failure.error_code == "BUILD_FAILED"
    assert failure.error_message == "Command failed"
    assert failure.state == "ERROR"
    assert result.error == "A failed (code=BUILD_FAILED • Command failed • state=ERROR)"
    assert failure.key == "deployment:vercel:dpl_1"


def test_start_exception_is_recorded_and_next_candidate_runs():
    provider = FakeDeployProvider({
        "A": DeployAttemptError("Vercel API error 400 on /v13/deployments: bad project"),
        "B": [DeployState.READY],
    })

    result = attempt(make_engine(provider), candidates("A", "B"))

    assert result.ok is True
    assert result.failures[0].deployment_id is None
    assert "bad project" in result.failures[0].error_message
    assert result.failures[0].key.startswith("noid:vercel:octo/site:main:A:")


def test_poll_timeout_is_a_failure():
    provider = FakeDeployProvider({"A": [DeployState.BUILDING]})

    result = attempt(make_engine(provider, max_polls=3), candidates("A"))

    assert result.ok is False
    assert provider.status_calls == 3
    assert "Timed out" in result.failure.error_message
    assert result.failure.deployment_id == "dpl_1"


class FlakyStatusProvider(FakeDeployProvider):
    """FakeDeployProvider whose first `failures` status checks raise."""

    def __init__(self, plans, failures: int):
        super().__init__(plans)
        self.failures = failures

    async def get_status(self, deployment_id):
        if self.failures > 0:
            self.failures -= 1
            self.status_calls += 1
            raise ConnectionError("status endpoint unreachable")
        return await super().get_status(deployment_id)


def test_transient_status_errors_are_retried():
    provider = FlakyStatusProvider({"A": [DeployState.BUILDING, DeployState.READY]}, failures=2)

    result = attempt(make_engine(provider), candidates("A"))

    assert result.ok is True
    assert result.failures == []
    assert provider.status_calls == 3


def test_persistent_status_errors_fail_the_candidate():
    provider = FlakyStatusProvider({"A": [DeployState.BUILDING, DeployState.READY]}, failures=10)

    result = attempt(make_engine(provider), candidates("A"))

    assert result.ok is False
    assert provider.status_calls == 4
    assert result.failure.deployment_id == "dpl_1"
    assert "status endpoint unreachable" in result.failure.error_message


def test_all_candidates_fail_returns_last_failure_and_ordered_list():
    provider = FakeDeployProvider({
        "A": [DeployState.ERROR],
        "B": RuntimeError("network down"),
        "C": [DeployState.BUILDING, DeployState.ERROR],
    })

    result = attempt(make_engine(provider), candidates("A", "B", "C"))

    assert provider.started == ["A", "B", "C"]
    assert [f.strategy_label for f in result.failures] == ["A", "B", "C"]
    assert result.failure is result.failures[-1]
    assert result.error == result.failure.summary()


def test_unknown_provider_is_configuration_error():
    engine = DeployStrategyEngine({})

    with pytest.raises(ConfigurationError):
        run_async(engine.run_deploy_attempt("render", "octo/site", "main", "site"))


def test_cancellation_stops_candidates():
    provider = FakeDeployProvider({"A": [DeployState.ERROR], "B": [DeployState.READY]})
    original_start = provider.start

    async def run():
        token = CancellationToken()

        async def start_then_cancel(body):
            outcome = await original_start(body)
            token.cancel()
            return outcome

        provider.start = start_then_cancel
        return await make_engine(provider).run_deploy_attempt(
            "vercel", "octo/site", "main", "site", cancel=token, candidates=candidates("A", "B"))

    with pytest.raises(OperationCancelled):
        run_async(run())
    assert provider.started == ["A"]


# ---------------------------------------------------------------------------
# Candidate building from repository metadata
# ---------------------------------------------------------------------------

class FakeRepository:
    def __init__(self, paths: List[str], files: Dict[str, str]):
        self.paths = paths
        self.files = files

    async def list_paths(self, repository, branch=None, cancel=None):
        return self.paths

    async def read_file(self, repository, path, branch=None, cancel=None):
        return self.files.get(path)


def test_build_candidates_uses_repository_listing():
    repo = FakeRepository(
        ["package.json", "web/package.json"],
        {"web/package.json": '{"dependencies": {"next": "14"}}'},
    )
    engine = DeployStrategyEngine({}, repository=repo)

    vercel = run_async(engine.build_candidates("vercel", "octo/site", "main", "site"))
    render = run_async(engine.build_candidates("render", "octo/site", "main", "site"))

    assert [c.label for c in vercel] == ["root=., project=site", "root=web, project=site"]
    assert len(render) == 4
    assert render[2].body["startCommand"] == "npm run start -- -p $PORT"


# ---------------------------------------------------------------------------
# Provider state mapping
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("READY", DeployState.READY),
        ("ERROR", DeployState.ERROR),
        ("CANCELED", DeployState.ERROR),
        ("BUILDING", DeployState.BUILDING),
        ("QUEUED", DeployState.PENDING),
        (None, DeployState.PENDING),
    ],
)
def test_map_vercel_state(raw, expected):
    assert map_vercel_state(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("live", DeployState.READY),
        ("succeeded", DeployState.READY),
        ("deployed", DeployState.READY),
        ("build_failed", DeployState.ERROR),
        ("update_failed", DeployState.ERROR),
        ("canceled", DeployState.ERROR),
        ("deactivated", DeployState.ERROR),
        ("build_in_progress", DeployState.BUILDING),
        ("created", DeployState.PENDING),
    ],
)
def test_map_render_status(raw, expected):
    assert map_render_status(raw) == expected


def test_clamp_log_limit():
    assert clamp_log_limit(None) == 2000
    assert clamp_log_limit(9000) == 5000
    assert clamp_log_limit(100) == 100


class ScriptedRender(RenderDeployProvider):
    """RenderDeployProvider with `_request` answered from memory."""

    def __init__(self, status: str = "build_failed"):
        super().__init__("rk_test", owner_id="own_1")
        self.status = status
        self.deploys = 0

    async def _request(self, method, path, params=None, json_body=None):
        if method == "GET" and path == "/v1/services":
            return [{"service": {"id": "srv_1", "name": "site"}}]
        if method == "PATCH":
            return {}
        if method == "POST" and path.endswith("/deploys"):
            self.deploys += 1
            return {"id": f"dep_{self.deploys}", "status": "created"}
        if path == "/v1/logs":
            return {"logs": [{"message": "npm ERR! build"}, {"message": "Cloning repo"}]}
        return {"id": path.rsplit("/", 1)[-1], "status": self.status}


RENDER_BODY = {
    "serviceName": "site",
    "repository": "octo/site",
    "branch": "main",
    "rootDirectory": "",
    "buildCommand": "npm ci && npm run build",
    "startCommand": "npm start",
}


def test_render_forgets_finished_deploys_but_keeps_recent_logs():
    provider = ScriptedRender()

    async def run():
        started = await provider.start(RENDER_BODY)
        assert started.id in provider._deploy_services
        outcome = await provider.get_status(started.id)
        assert outcome.state == DeployState.ERROR
        assert started.id not in provider._deploy_services
        return await provider.fetch_logs(started.id)

    assert run_async(run()) == "Cloning repo\nnpm ERR! build"


def test_render_finished_deploy_lookup_is_bounded():
    provider = ScriptedRender(status="live")

    async def run():
        for _ in range(FINISHED_DEPLOYS_KEPT + 1):
            started = await provider.start(RENDER_BODY)
            await provider.get_status(started.id)

    run_async(run())

    assert provider._deploy_services == {}
    assert len(provider._finished_services) == FINISHED_DEPLOYS_KEPT
    with pytest.raises(DeployAttemptError, match="Unknown Render deploy dep_1"):
        run_async(provider.get_status("dep_1"))
