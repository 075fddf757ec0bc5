"""Idempotent OS-level configuration required by the kubelet."""
import logging
import re
from pathlib import Path
from typing import Dict, List, Sequence

from ..errors import SystemConfigurationFailed
from ..utils import CommandRunner, host_path

logger = logging.getLogger(__name__)

FSTAB = "/etc/fstab"
MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"

KERNEL_MODULES = ("overlay", "br_netfilter")

SYSCTL_SETTINGS: Dict[str, str] = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}

_SWAP_ENTRY = re.compile(r"^\s*[^#\s]\S*\s+\S+\s+swap(\s|$)")


def comment_swap_entries(lines: Sequence[str]) -> List[str]:
    """Comment out active swap entries of an fstab, leaving the rest untouched."""
    result = []
    for line in lines:
        if _SWAP_ENTRY.match(line):
            result.append("#" + line)
        else:
            result.append(line)
    return result


def merge_sysctl(lines: Sequence[str], settings: Dict[str, str]) -> List[str]:
    """Set each key exactly once in a sysctl file body.

    The first occurrence of a key is rewritten in place, later duplicates are
    dropped, and missing keys are appended in ``settings`` order.
    """
    seen = set()
    result = []
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith(("#", ";")) and "=" in stripped:
            key = stripped.split("=", 1)[0].strip()
            if key in settings:
                if key in seen:
                    continue
                seen.add(key)
                result.append(f"{key} = {settings[key]}")
                continue
        result.append(line)
    for key, value in settings.items():
        if key not in seen:
            result.append(f"{key} = {value}")
    return result


def merge_lines(lines: Sequence[str], wanted: Sequence[str]) -> List[str]:
    """Ensure every wanted line appears exactly once."""
    result = []
    seen = set()
    for line in lines:
        entry = line.strip()
        if entry in wanted:
            if entry in seen:
                continue
            seen.add(entry)
            result.append(entry)
        else:
            result.append(line)
    result.extend(w for w in wanted if w not in seen)
    return result


def _read_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


def _write_lines(path: Path, lines: Sequence[str]) -> bool:
    """Write lines if the content changed. Returns True when the file was written."""
    content = "\n".join(lines) + "\n" if lines else ""
    if path.exists() and path.read_text(encoding="utf-8") == content:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return True


class SystemConfigurator:
    """Applies swap, kernel module and sysctl settings.

    Every operation can be re-applied without error and without adding
    duplicate configuration lines.
    """

    def __init__(self, runner: CommandRunner, root: str = "/"):
        self.runner = runner
        self.root = root

    def disable_swap(self) -> None:
        logger.info("  - disable swap")
        self.runner.run(["swapoff", "-a"])
        fstab = host_path(self.root, FSTAB)
        if fstab.exists():
            if _write_lines(fstab, comment_swap_entries(_read_lines(fstab))):
                logger.debug(f"Commented swap entries in {fstab}")

    def load_kernel_modules(self) -> None:
        logger.info("  - enable required kernel modules")
        conf = host_path(self.root, MODULES_CONF)
        _write_lines(conf, merge_lines(_read_lines(conf), KERNEL_MODULES))
        for module in KERNEL_MODULES:
            self.runner.run(["modprobe", module])

    def configure_sysctl(self) -> None:
        logger.info("  - forwarding IPv4 and letting iptables see bridged traffic")
        conf = host_path(self.root, SYSCTL_CONF)
        _write_lines(conf, merge_sysctl(_read_lines(conf), SYSCTL_SETTINGS))
        logger.info("  - apply sysctl settings")
        self.runner.run(["sysctl", "--system"])

    def apply(self) -> None:
        """Apply every setting, stopping at the first failure.

        Raises:
            SystemConfigurationFailed: If a configuration file cannot be read
                or written
            CommandFailed: If swapoff, modprobe or sysctl exits nonzero
        """
        logger.info("⚙️  Configure system settings:")
        steps = (
            ("swap", self.disable_swap),
            ("kernel modules", self.load_kernel_modules),
            ("sysctl", self.configure_sysctl),
        )
        for setting, step in steps:
            try:
                step()
            except OSError as e:
                raise SystemConfigurationFailed(setting, e) from e
