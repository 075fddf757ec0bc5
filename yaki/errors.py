"""Exception hierarchy for yaki.

Every fatal condition raised by the node-lifecycle commands derives from
:class:`YakiError`, so the CLI can turn any of them into a single log line
and exit code 1.
"""
from typing import List, Optional, Sequence


class YakiError(Exception):
    """Base class for all yaki errors."""


class ConfigurationError(YakiError):
    """Raised when an environment value cannot be parsed."""


class PrerequisiteMissing(YakiError):
    """A host prerequisite (executable, privilege, config file) is missing."""

    def __init__(self, name: str, detail: Optional[str] = None):
        self.name = name
        self.detail = detail
        message = f"Missing prerequisite: {name}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnsupportedArchitecture(YakiError):
    def __init__(self, arch: str):
        self.arch = arch
        super().__init__(f"Unsupported architecture {arch}")


class UnknownComponent(YakiError):
    def __init__(self, component: str):
        self.component = component
        super().__init__(f"Unknown component '{component}': no override and no matrix entry")


class InstallationFailed(YakiError):
    """Downloading or installing a component failed."""

    def __init__(self, component: str, cause: object):
        self.component = component
        self.cause = cause
        super().__init__(f"Installation of {component} failed: {cause}")


class DownloadTimeout(InstallationFailed):
    def __init__(self, component: str, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(component, f"download of {url} timed out after {timeout}s")


class MissingJoinTarget(YakiError):
    def __init__(self):
        super().__init__(
            "Either JOIN_URL or KUBEADM_CONFIG must be set and no host address could be detected"
        )


class MissingCredential(YakiError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing credential: {name}")


class InvalidArgument(YakiError):
    def __init__(self, flag: str, value: object, reason: str):
        self.flag = flag
        self.value = value
        super().__init__(f"Invalid value for {flag}: {reason}")


class InvalidTransition(YakiError):
    def __init__(self, action: str, state: object):
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} a node in state {state}")


class CommandFailed(YakiError):
    """An external command exited nonzero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.args_list: List[str] = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{' '.join(self.args_list)}' exited with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


class ClusterControlFailure(YakiError):
    """kubeadm exited nonzero."""

    def __init__(self, action: str, returncode: int, stderr: str = ""):
        self.action = action
        self.returncode = returncode
        self.stderr = stderr
        message = f"kubeadm {action} failed with status {returncode}"
        if stderr.strip():
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class SystemConfigurationFailed(YakiError):
    """A host setting (swap, kernel modules, sysctl) could not be written."""

    def __init__(self, setting: str, cause: object):
        self.setting = setting
        self.cause = cause
        super().__init__(f"Configuring {setting} failed: {cause}")
