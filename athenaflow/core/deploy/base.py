"""
Deploy data model and provider contract.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DeployState(Enum):
    PENDING = "pending"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (DeployState.READY, DeployState.ERROR)


@dataclass
class DeploymentOutcome:
    """Current state of one provider deployment."""
    state: DeployState
    id: Optional[str] = None
    url: Optional[str] = None
    diagnostics_ref: Optional[str] = None
    logs_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_status: Optional[str] = None


@dataclass
class DeployStrategyCandidate:
    """One concrete deployment configuration to try."""
    label: str
    body: Dict[str, Any]


@dataclass
class DeployFailure:
    """Structured record of one failed strategy attempt."""
    provider: str
    repository: str
    branch: str
    project_name: str
    strategy_label: str
    deployment_id: Optional[str] = None
    diagnostics_ref: Optional[str] = None
    logs_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    state: Optional[str] = None

    @property
    def provider_label(self) -> str:
        return "Render" if self.provider == "render" else "Vercel"

    @property
    def key(self) -> str:
        """Identity used to recognise a failure that was already handled."""
        if self.deployment_id:
            return f"deployment:{self.provider}:{self.deployment_id}"
        return (
            f"noid:{self.provider}:{self.repository}:{self.branch}:{self.strategy_label}:"
            f"{self.error_code or ''}:{self.error_message or ''}"
        )

    def detail(self) -> Optional[str]:
        """code=X • message • state=Y, skipping the parts that are unknown."""
        parts = []
        if self.error_code:
            parts.append(f"code={self.error_code}")
        if self.error_message:
            parts.append(self.error_message)
        if self.state:
            parts.append(f"state={self.state}")
        return " • ".join(parts) or None

    def summary(self) -> str:
        return f"{self.strategy_label} failed ({self.detail() or 'unknown error'})"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeployResult:
    """Outcome of one engine call."""
    ok: bool
    outcome: Optional[DeploymentOutcome] = None
    failure: Optional[DeployFailure] = None
    failures: List[DeployFailure] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        if self.ok:
            return None
        if self.failure:
            return self.failure.summary()
        return "Deployment failed after multiple attempts"


class DeployProvider(ABC):
    """Contract every hosting provider client implements."""

    name: str = ""

    @abstractmethod
    async def start(self, body: Dict[str, Any]) -> DeploymentOutcome:
        """Start a deployment; the outcome carries its id and diagnostics ref."""
        pass

    @abstractmethod
    async def get_status(self, deployment_id: str) -> DeploymentOutcome:
        pass

    @abstractmethod
    async def fetch_logs(self, deployment_id: str) -> str:
        pass
