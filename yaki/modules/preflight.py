"""Host prerequisite checks."""
import logging
import os
import platform
from pathlib import Path
from typing import Optional, Sequence

import yaml
from jsonschema import ValidationError, validate

from ..errors import PrerequisiteMissing, UnsupportedArchitecture
from ..utils import CommandRunner
from .models import HostEnvironment

logger = logging.getLogger(__name__)

REQUIRED_COMMANDS = (
    "conntrack",
    "socat",
    "ip",
    "iptables",
    "modprobe",
    "sysctl",
    "systemctl",
    "nsenter",
    "ebtables",
    "ethtool",
)

SUPPORTED_ARCHITECTURES = ("amd64", "arm64")

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

KUBEADM_DOCUMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "apiVersion": {"type": "string", "pattern": "^kubeadm\\.k8s\\.io/"},
        "kind": {"type": "string", "minLength": 1},
    },
    "required": ["apiVersion", "kind"],
}


def normalize_arch(machine: str) -> str:
    return ARCH_ALIASES.get(machine.lower(), machine)


def detect_host(arch: Optional[str] = None) -> HostEnvironment:
    """Resolve the host environment.

    Args:
        arch: Architecture override (the ``ARCH`` variable); detected when None
    """
    return HostEnvironment(
        arch=normalize_arch(arch or platform.machine()),
        os_family=platform.system().lower(),
        is_root=os.geteuid() == 0,
    )


class PreflightChecker:
    """Fails fast when the host cannot run a node."""

    def __init__(
        self,
        host: HostEnvironment,
        runner: CommandRunner,
        required_commands: Sequence[str] = REQUIRED_COMMANDS,
    ):
        self.host = host
        self.runner = runner
        self.required_commands = tuple(required_commands)

    def check_privilege(self) -> None:
        if not self.host.is_root:
            raise PrerequisiteMissing("root", "you need to be root to perform this install")

    def check_architecture(self) -> None:
        if self.host.arch not in SUPPORTED_ARCHITECTURES:
            raise UnsupportedArchitecture(self.host.arch)

    def check_commands(self) -> None:
        for cmd in self.required_commands:
            if not self.runner.which(cmd):
                raise PrerequisiteMissing(cmd, "please install it before proceeding")
            logger.debug(f"Found {cmd}")

    def check_kubeadm_config(self, path: str) -> None:
        """Validate that a kubeadm config file is a stream of kubeadm API objects."""
        config_path = Path(path)
        if not config_path.is_file():
            raise PrerequisiteMissing("KUBEADM_CONFIG", f"{path} does not exist")
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                documents = [doc for doc in yaml.safe_load_all(f) if doc is not None]
        except yaml.YAMLError as e:
            raise PrerequisiteMissing("KUBEADM_CONFIG", f"invalid YAML in {path}: {e}")

        if not documents:
            raise PrerequisiteMissing("KUBEADM_CONFIG", f"{path} is empty")
        for doc in documents:
            try:
                validate(instance=doc, schema=KUBEADM_DOCUMENT_SCHEMA)
            except ValidationError as e:
                raise PrerequisiteMissing("KUBEADM_CONFIG", f"{path}: {e.message}")

    def run(self, kubeadm_config: Optional[str] = None) -> None:
        """Run all checks, stopping at the first failure."""
        logger.info("🔍 Checking if prerequisites are installed")
        self.check_privilege()
        self.check_architecture()
        self.check_commands()
        if kubeadm_config:
            self.check_kubeadm_config(kubeadm_config)
        logger.info(f"✅ Preflight passed ({self.host.os_family}/{self.host.arch})")
