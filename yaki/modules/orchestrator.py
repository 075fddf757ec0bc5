"""Composition of the node lifecycle verbs."""
import logging
from typing import Optional

from ..config import Config
from ..utils import CommandRunner, HostAddressProvider, SystemAddressProvider, host_path
from ..utils.kube import wait_for_control_plane
from .installer import ComponentInstaller, Downloader
from .kubeadm import ADMIN_KUBECONFIG, ClusterLifecycleManager, detect_state, join_args
from .models import CleanupReport, ClusterState, HostEnvironment, InitSpec, JoinSpec
from .preflight import PreflightChecker
from .system import SystemConfigurator
from .versions import VersionResolver

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs ``setup``, ``init``, ``join`` and ``reset`` for the local node.

    Every collaborator can be injected; the defaults talk to the real host.
    """

    def __init__(
        self,
        config: Config,
        host: HostEnvironment,
        runner: Optional[CommandRunner] = None,
        downloader: Optional[Downloader] = None,
        addresses: Optional[HostAddressProvider] = None,
    ):
        self.config = config
        self.host = host
        self.runner = runner or CommandRunner()
        self.resolver = VersionResolver(overrides=config.version_overrides)
        self.preflight = PreflightChecker(host, self.runner)
        self.system = SystemConfigurator(self.runner, root=config.root)
        self.installer = ComponentInstaller(
            self.runner,
            downloader or Downloader(timeout=config.download_timeout),
            arch=host.arch,
            root=config.root,
        )
        self.cluster = ClusterLifecycleManager(
            self.runner,
            addresses=addresses or SystemAddressProvider(self.runner),
            state=detect_state(config.root),
            root=config.root,
            debug=config.debug,
        )

    def init_spec(self) -> InitSpec:
        return InitSpec(
            config_file=self.config.kubeadm_config,
            endpoint=self.config.join_url,
            advertise_address=self.config.advertise_address,
            bind_port=self.config.bind_port,
        )

    def join_spec(self) -> JoinSpec:
        return JoinSpec(
            endpoint=self.config.join_url,
            token=self.config.join_token,
            ca_cert_hash=self.config.join_token_cacert_hash,
            cert_key=self.config.join_token_cert_key,
            control_plane=self.config.join_as_control_plane,
            config_file=self.config.kubeadm_config,
        )

    def setup(self) -> None:
        logger.info("🛠️  Prepare the machine for kubernetes")
        self.preflight.run(kubeadm_config=self.config.kubeadm_config)
        logger.info("Resolved component versions:")
        self.resolver.log_versions()
        self.system.apply()
        self.installer.run(self.installer.plan(self.resolver))

    def init(self, wait: bool = False, wait_timeout: int = 300) -> ClusterState:
        # Check the state and resolve the join target before touching the host
        if not self.cluster.check_transition("init", ClusterState.CONTROL_PLANE_READY):
            return self.cluster.state
        spec = self.cluster.resolve_init_spec(self.init_spec())
        self.setup()
        logger.info("Initializing node as control-plane")
        state = self.cluster.init(spec)
        if wait:
            wait_for_control_plane(str(host_path(self.config.root, ADMIN_KUBECONFIG)), timeout=wait_timeout)
        return state

    def join(self) -> ClusterState:
        spec = self.join_spec()
        join_args(spec)
        if not self.cluster.check_transition("join", ClusterState.JOINED):
            return self.cluster.state
        self.setup()
        logger.info("Joining node to the control-plane")
        return self.cluster.join(spec)

    def reset(self, reboot: bool = True) -> CleanupReport:
        self.preflight.check_privilege()
        return self.cluster.reset(reboot=reboot)
