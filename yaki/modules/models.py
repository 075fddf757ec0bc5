"""Data models for node lifecycle management."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional


class ClusterState(str, Enum):
    """Lifecycle states of the local node."""
    UNINITIALIZED = 'uninitialized'
    CONTROL_PLANE_READY = 'control_plane_ready'
    JOINED = 'joined'
    RESET = 'reset'


class StepStatus(str, Enum):
    """Outcome of a best-effort cleanup step."""
    OK = 'ok'
    ABSENT = 'absent'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class HostEnvironment:
    """Facts about the host, resolved once at startup."""
    arch: str
    os_family: str
    is_root: bool


@dataclass(frozen=True)
class InitSpec:
    """Parameters for ``kubeadm init``.

    Either ``config_file`` or ``endpoint`` drives the call; the endpoint
    form also carries the API server advertise address and port.
    """
    config_file: Optional[str] = None
    endpoint: Optional[str] = None
    advertise_address: str = '0.0.0.0'
    bind_port: int = 6443


@dataclass(frozen=True)
class JoinSpec:
    """Parameters for ``kubeadm join``."""
    endpoint: Optional[str] = None
    token: Optional[str] = None
    ca_cert_hash: Optional[str] = None
    cert_key: Optional[str] = None
    control_plane: bool = False
    config_file: Optional[str] = None


@dataclass
class InstallStep:
    """One idempotent step of an installation plan."""
    component: str
    version: str
    action: Callable[[str], None]
    description: str = ''

    def run(self) -> None:
        self.action(self.version)


@dataclass
class InstallationPlan:
    """Ordered sequence of install steps."""
    steps: List[InstallStep] = field(default_factory=list)

    def add(self, step: InstallStep) -> None:
        self.steps.append(step)

    def components(self) -> List[str]:
        return [step.component for step in self.steps]

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class StepResult:
    """Result of a single best-effort step."""
    name: str
    status: StepStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.FAILED


@dataclass
class CleanupReport:
    """Collected results of the reset path."""
    results: List[StepResult] = field(default_factory=list)
    rebooted: bool = False

    def record(self, result: StepResult) -> StepResult:
        self.results.append(result)
        return result

    @property
    def failures(self) -> List[StepResult]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def step_names(self) -> List[str]:
        return [r.name for r in self.results]

    def summary(self) -> str:
        counts = {}
        for r in self.results:
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        parts = [f"{count} {status}" for status, count in sorted(counts.items())]
        return ", ".join(parts) if parts else "no steps"
