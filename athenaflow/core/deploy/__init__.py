from athenaflow.core.deploy.base import (
    DeployFailure,
    DeploymentOutcome,
    DeployProvider,
    DeployResult,
    DeployState,
    DeployStrategyCandidate,
)
from athenaflow.core.deploy.engine import DeployStrategyEngine
from athenaflow.core.deploy.render_client import RenderDeployProvider
from athenaflow.core.deploy.strategies import select_deployment_platform
from athenaflow.core.deploy.vercel_client import VercelDeployProvider

__all__ = [
    "DeployFailure",
    "DeploymentOutcome",
    "DeployProvider",
    "DeployResult",
    "DeployState",
    "DeployStrategyCandidate",
    "DeployStrategyEngine",
    "RenderDeployProvider",
    "VercelDeployProvider",
    "select_deployment_platform",
]
