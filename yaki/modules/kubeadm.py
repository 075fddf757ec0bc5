"""Cluster lifecycle management through kubeadm.

kubeadm arguments are always built as validated lists by
:class:`KubeadmArgs`; nothing here concatenates command strings.
"""

import ipaddress
import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..errors import (
    ClusterControlFailure,
    CommandFailed,
    InvalidArgument,
    InvalidTransition,
    MissingCredential,
    MissingJoinTarget,
)
from ..utils import CommandRunner, HostAddressProvider, StaticAddressProvider, host_path, redact_args
from .installer import BIN_DIR, CONTAINERD_UNIT, CRICTL_CONFIG, SBIN_DIR, SERVICE_DIR
from .models import (
    CleanupReport,
    ClusterState,
    InitSpec,
    JoinSpec,
    StepResult,
    StepStatus,
)

logger = logging.getLogger(__name__)

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBELET_KUBECONFIG = "/etc/kubernetes/kubelet.conf"

# systemctl exit status for a unit that is not loaded
SYSTEMCTL_UNIT_NOT_LOADED = 5

KUBE_PATHS = (
    f"{BIN_DIR}/kubeadm",
    f"{BIN_DIR}/kubelet",
    f"{BIN_DIR}/kubectl",
    "/etc/kubernetes",
    "/var/run/kubernetes",
    "/var/lib/kubelet",
    "/var/lib/etcd",
    f"{SERVICE_DIR}/kubelet.service",
    f"{SERVICE_DIR}/kubelet.service.d",
)

CONTAINERD_PATHS = (
    f"{BIN_DIR}/containerd",
    f"{BIN_DIR}/containerd-shim",
    f"{BIN_DIR}/containerd-shim-runc-v1",
    f"{BIN_DIR}/containerd-shim-runc-v2",
    f"{BIN_DIR}/containerd-stress",
    f"{BIN_DIR}/ctr",
    "/etc/containerd",
    CONTAINERD_UNIT,
    f"{SBIN_DIR}/runc",
    f"{BIN_DIR}/crictl",
    CRICTL_CONFIG,
)

SIDE_PATHS = (
    "/etc/cni/net.d",
    "/opt/cni/bin",
    "/var/lib/cni",
    "/var/log/containers",
    "/var/log/pods",
    "/var/lib/yaki",
)

IPTABLES_FLUSH = (
    ["iptables", "-F"],
    ["iptables", "-t", "nat", "-F"],
    ["iptables", "-t", "mangle", "-F"],
    ["iptables", "-X"],
)


class KubeadmArgs:
    """Typed builder for a kubeadm argument list."""

    def __init__(self, action: str):
        self._args: List[str] = [action]

    @staticmethod
    def _check(flag: str, value: object) -> str:
        text = str(value) if value is not None else ""
        if not text:
            raise InvalidArgument(flag, value, "value is empty")
        if any(c.isspace() for c in text):
            raise InvalidArgument(flag, value, "value contains whitespace")
        if text.startswith("-"):
            raise InvalidArgument(flag, value, "value looks like a flag")
        return text

    def positional(self, name: str, value: object) -> "KubeadmArgs":
        self._args.append(self._check(name, value))
        return self

    def option(self, flag: str, value: object) -> "KubeadmArgs":
        self._args.extend([flag, self._check(flag, value)])
        return self

    def flag(self, flag: str) -> "KubeadmArgs":
        self._args.append(flag)
        return self

    def build(self) -> List[str]:
        return list(self._args)


def verbosity_flag(debug: bool) -> str:
    return "-v=8" if debug else "-v=3"


def init_args(spec: InitSpec, debug: bool = False) -> List[str]:
    """Arguments for ``kubeadm init``; exactly one of config file or endpoint drives it."""
    args = KubeadmArgs("init")
    if spec.config_file and spec.endpoint:
        raise InvalidArgument("--config", spec.config_file, "cannot be combined with an endpoint")
    if spec.config_file:
        args.option("--config", spec.config_file)
    elif spec.endpoint:
        args.option("--control-plane-endpoint", spec.endpoint)
        args.option("--apiserver-advertise-address", spec.advertise_address)
        args.option("--apiserver-bind-port", spec.bind_port)
    else:
        raise MissingJoinTarget()
    return args.flag("--upload-certs").flag(verbosity_flag(debug)).build()


def join_args(spec: JoinSpec, debug: bool = False) -> List[str]:
    """Arguments for ``kubeadm join``.

    Credentials are required even when a config file drives the call.
    """
    if not spec.endpoint:
        raise MissingCredential("Endpoint")
    if not spec.token:
        raise MissingCredential("Token")
    if not spec.ca_cert_hash:
        raise MissingCredential("CACertHash")
    if spec.control_plane and not spec.cert_key:
        raise MissingCredential("CertKey")

    args = KubeadmArgs("join")
    if spec.config_file:
        args.option("--config", spec.config_file)
    else:
        args.positional("endpoint", spec.endpoint)
        args.option("--token", spec.token)
        args.option("--discovery-token-ca-cert-hash", spec.ca_cert_hash)
        if spec.control_plane:
            args.flag("--control-plane")
            args.option("--certificate-key", spec.cert_key)
    return args.flag(verbosity_flag(debug)).build()


def preferred_address(addresses: Sequence[str]) -> str:
    """First IPv4 address, or the first address when there is none."""
    for address in addresses:
        try:
            if ipaddress.ip_address(address).version == 4:
                return address
        except ValueError:
            continue
    return addresses[0]


def format_endpoint(address: str, port: int) -> str:
    """``host:port``, with IPv6 literals in brackets."""
    try:
        if ipaddress.ip_address(address).version == 6:
            return f"[{address}]:{port}"
    except ValueError:
        pass
    return f"{address}:{port}"


def detect_state(root: str = "/") -> ClusterState:
    """Infer the node's lifecycle state from kubeadm's kubeconfig files."""
    if host_path(root, ADMIN_KUBECONFIG).exists():
        return ClusterState.CONTROL_PLANE_READY
    if host_path(root, KUBELET_KUBECONFIG).exists():
        return ClusterState.JOINED
    return ClusterState.UNINITIALIZED


def _remove_path(path: Path) -> bool:
    """Remove a file or tree. Returns False when nothing was there."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


class ClusterLifecycleManager:
    """Drives a node through init, join and reset.

    States: Uninitialized → ControlPlaneReady (init), Uninitialized → Joined
    (join), any → Reset (reset).
    """

    def __init__(
        self,
        runner: CommandRunner,
        addresses: Optional[HostAddressProvider] = None,
        state: ClusterState = ClusterState.UNINITIALIZED,
        root: str = "/",
        debug: bool = False,
    ):
        self.runner = runner
        self.addresses = addresses or StaticAddressProvider([])
        self.state = state
        self.root = root
        self.debug = debug

    def _kubeadm(self, action: str, args: List[str]) -> None:
        logger.info(f"🚀 kubeadm {' '.join(redact_args(args))}")
        try:
            result = self.runner.run(["kubeadm"] + args, check=False, capture=False)
        except CommandFailed as e:
            raise ClusterControlFailure(action, e.returncode, e.stderr) from e
        if result.returncode != 0:
            raise ClusterControlFailure(action, result.returncode, result.stderr or "")

    def check_transition(self, action: str, target: ClusterState) -> bool:
        """Check a transition before anything touches the host.

        Returns:
            bool: False when the node is already in ``target``

        Raises:
            InvalidTransition: If the node is neither uninitialized nor in ``target``
        """
        if self.state == target:
            logger.info(f"✅ Node is already {target.value}, nothing to {action}")
            return False
        if self.state != ClusterState.UNINITIALIZED:
            raise InvalidTransition(action, self.state.value)
        return True

    def resolve_init_spec(self, spec: InitSpec) -> InitSpec:
        """Fill in the endpoint from the host address when nothing drives init."""
        if spec.config_file:
            if spec.endpoint:
                logger.warning("⚠️  KUBEADM_CONFIG is set, ignoring JOIN_URL for init")
            return InitSpec(config_file=spec.config_file)
        if spec.endpoint:
            return spec
        found = self.addresses.addresses()
        if not found:
            raise MissingJoinTarget()
        endpoint = format_endpoint(preferred_address(found), spec.bind_port)
        logger.info(f"Using host address as control-plane endpoint: {endpoint}")
        return InitSpec(
            endpoint=endpoint,
            advertise_address=spec.advertise_address,
            bind_port=spec.bind_port,
        )

    def init(self, spec: InitSpec) -> ClusterState:
        """Initialize the first control-plane node.

        Raises:
            MissingJoinTarget: If neither config file nor endpoint can be resolved
            ClusterControlFailure: If kubeadm fails
        """
        if not self.check_transition("init", ClusterState.CONTROL_PLANE_READY):
            return self.state
        args = init_args(self.resolve_init_spec(spec), debug=self.debug)
        logger.info("Initializing the control-plane")
        self._kubeadm("init", args)
        self.state = ClusterState.CONTROL_PLANE_READY
        return self.state

    def join(self, spec: JoinSpec) -> ClusterState:
        """Join this node to an existing cluster.

        Raises:
            MissingCredential: If endpoint, token, CA hash or (control plane) cert key is missing
            ClusterControlFailure: If kubeadm fails
        """
        args = join_args(spec, debug=self.debug)
        if not self.check_transition("join", ClusterState.JOINED):
            return self.state
        role = "control plane" if spec.control_plane else "worker"
        logger.info(f"Joining the node to the cluster as {role}")
        self._kubeadm("join", args)
        self.state = ClusterState.JOINED
        return self.state

    # Reset

    def _best_effort(self, report: CleanupReport, name: str, action: Callable[[], bool]) -> StepResult:
        """Run one cleanup step; ``action`` returns False when there was nothing to do."""
        try:
            did_work = action()
        except (CommandFailed, OSError) as e:
            logger.warning(f"⚠️  {name} failed: {e}")
            return report.record(StepResult(name, StepStatus.FAILED, str(e)))
        status = StepStatus.OK if did_work else StepStatus.ABSENT
        logger.debug(f"{name}: {status.value}")
        return report.record(StepResult(name, status))

    def _stop_unit(self, unit: str) -> bool:
        result = self.runner.run(["systemctl", "stop", unit], check=False)
        if result.returncode == SYSTEMCTL_UNIT_NOT_LOADED:
            return False
        if result.returncode != 0:
            raise CommandFailed(["systemctl", "stop", unit], result.returncode, result.stderr or "")
        return True

    def _kubeadm_reset(self) -> bool:
        if not self.runner.which("kubeadm"):
            return False
        self.runner.run(["kubeadm", "reset", "-f"])
        return True

    def _remove_paths(self, paths: Sequence[str]) -> bool:
        removed = [p for p in paths if _remove_path(host_path(self.root, p))]
        for p in removed:
            logger.debug(f"Removed {p}")
        return bool(removed)

    def _flush_iptables(self) -> bool:
        if not self.runner.which("iptables"):
            return False
        for cmd in IPTABLES_FLUSH:
            self.runner.run(cmd)
        return True

    def _reboot(self) -> bool:
        self.runner.run(["systemctl", "reboot"])
        return True

    def reset(self, reboot: bool = True) -> CleanupReport:
        """Tear the node down, best effort.

        Each step tolerates components that are already absent; failures are
        logged and recorded but never stop the following steps.
        """
        report = CleanupReport()
        logger.info("🧹 Cleaning up")

        logger.info("removing kubernetes components")
        self._best_effort(report, "stop-kubelet", lambda: self._stop_unit("kubelet"))
        self._best_effort(report, "kubeadm-reset", self._kubeadm_reset)
        self._best_effort(report, "remove-kubernetes", lambda: self._remove_paths(KUBE_PATHS))

        logger.info("removing containerd")
        self._best_effort(report, "stop-containerd", lambda: self._stop_unit("containerd"))
        self._best_effort(report, "remove-containerd", lambda: self._remove_paths(CONTAINERD_PATHS))

        logger.info("removing side configuration files and binaries")
        self._best_effort(report, "remove-side-files", lambda: self._remove_paths(SIDE_PATHS))

        logger.info("cleaning up iptables")
        self._best_effort(report, "flush-iptables", self._flush_iptables)

        self.state = ClusterState.RESET

        if report.failures:
            for failure in report.failures:
                logger.error(f"❌ {failure.name}: {failure.error}")
        logger.info(f"Cleanup finished: {report.summary()}")

        if reboot:
            logger.info("🔁 Rebooting the machine now...")
            result = self._best_effort(report, "reboot", self._reboot)
            report.rebooted = result.status == StepStatus.OK
        else:
            report.record(StepResult("reboot", StepStatus.SKIPPED))
            logger.info("Reboot skipped, reboot the machine before reusing it")
        return report
