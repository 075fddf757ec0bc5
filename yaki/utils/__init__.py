"""Utility functions and helpers for yaki."""
import logging
import os
import shutil
import socket
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from ..config import REDACT_KEYS
from ..errors import CommandFailed

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Command-line flags whose following value is a secret
SECRET_FLAGS = ("--token", "--certificate-key")


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: REDACTED if v is not None and any(
                redact_key.lower() in k.lower()
                for redact_key in REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


def write_yaml_file(path: Path, data: Dict[str, Any], mode: int = 0o644) -> None:
    """Write a YAML file with the given data.

    Args:
        path: Path to the YAML file
        data: Data to write as YAML
        mode: File permissions (default: 0o644)

    Raises:
        OSError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.chmod(path, mode)
    except OSError as e:
        logger.error(f"Failed to write YAML file {path}: {e}")
        raise


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Read a YAML file, returning an empty dict when it does not exist.

    Raises:
        yaml.YAMLError: If the file is not valid YAML
    """
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in {path}: {e}")
        raise


def host_path(root: str, path: str) -> Path:
    """Resolve an absolute host path below a filesystem root."""
    return Path(root) / path.lstrip("/")


def redact_args(args: Sequence[str]) -> List[str]:
    """Mask the values of secret flags in an argument list."""
    redacted = []
    hide_next = False
    for arg in args:
        if hide_next:
            redacted.append(REDACTED)
            hide_next = False
            continue
        redacted.append(arg)
        if arg in SECRET_FLAGS:
            hide_next = True
    return redacted


class CommandRunner:
    """Runs external commands on the local host.

    Components never call :mod:`subprocess` directly; they go through a
    runner so tests can substitute a recording fake.
    """

    def run(
        self,
        args: Sequence[str],
        check: bool = True,
        capture: bool = True,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command.

        Args:
            args: Command and arguments, never a shell string
            check: If True, raise CommandFailed on a nonzero exit status
            capture: Capture stdout/stderr instead of inheriting the terminal
            input_text: Text written to the command's stdin

        Returns:
            The completed process

        Raises:
            CommandFailed: If the command fails and check is True, or the
                executable does not exist
        """
        args = list(args)
        logger.debug("Running: %s", " ".join(redact_args(args)))
        try:
            result = subprocess.run(
                args,
                capture_output=capture,
                text=True,
                input=input_text,
            )
        except FileNotFoundError as e:
            raise CommandFailed(args, 127, str(e)) from e

        if result.returncode != 0:
            logger.debug("Command %s exited with %s", args[0], result.returncode)
            if check:
                raise CommandFailed(args, result.returncode, result.stderr or "")
        return result

    def which(self, name: str) -> Optional[str]:
        """Return the full path of an executable on PATH, or None."""
        return shutil.which(name)


class HostAddressProvider:
    """Source of the host's IP addresses, in preference order."""

    def addresses(self) -> List[str]:
        raise NotImplementedError


class StaticAddressProvider(HostAddressProvider):
    def __init__(self, addresses: Sequence[str]):
        self._addresses = list(addresses)

    def addresses(self) -> List[str]:
        return list(self._addresses)


class SystemAddressProvider(HostAddressProvider):
    """Detects addresses with ``hostname -I``, falling back to the primary route."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def addresses(self) -> List[str]:
        try:
            result = self.runner.run(["hostname", "-I"], check=False)
            found = result.stdout.split() if result.returncode == 0 else []
        except CommandFailed as e:
            logger.debug(f"hostname -I unavailable: {e}")
            found = []
        if found:
            return found

        primary = get_primary_ip()
        return [primary] if primary else []


def get_primary_ip() -> Optional[str]:
    """Get the address of the interface holding the default route.

    Returns:
        str: IP address, or None if detection fails
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connecting a UDP socket only selects a route
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
    except OSError as e:
        logger.warning(f"Failed to detect primary IP: {e}")
        return None
    finally:
        s.close()
    if ip.startswith("127.") or ip == "0.0.0.0":
        return None
    return ip
