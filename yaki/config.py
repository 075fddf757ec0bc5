"""Configuration management for yaki.

All environment variables are read exactly once, into a frozen
:class:`Config`, which is then handed to every component.
"""
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_ADVERTISE_ADDRESS = "0.0.0.0"
DEFAULT_BIND_PORT = 6443
DEFAULT_DOWNLOAD_TIMEOUT = 300.0

TRUTHY = ("1", "true", "yes", "on")

# Components whose version may be overridden with <NAME>_VERSION
VERSION_ENV_COMPONENTS = ("kubernetes", "containerd", "runc", "cni", "crictl")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Keys whose values are never written to logs
REDACT_KEYS: tuple = ("token", "cert_key", "certificate-key", "password", "secret")


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in TRUTHY


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Config:
    """Immutable runtime configuration."""

    version_overrides: Mapping[str, str] = field(default_factory=dict)
    kubeadm_config: Optional[str] = None
    advertise_address: str = DEFAULT_ADVERTISE_ADDRESS
    bind_port: int = DEFAULT_BIND_PORT
    join_url: Optional[str] = None
    join_token: Optional[str] = None
    join_token_cacert_hash: Optional[str] = None
    join_token_cert_key: Optional[str] = None
    join_as_control_plane: bool = False
    debug: bool = False
    arch: Optional[str] = None
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    log_level: str = "INFO"
    root: str = "/"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "Config":
        """Build a Config from environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``)
            **overrides: Field values that take precedence over the environment

        Returns:
            Config instance

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        versions = {}
        for component in VERSION_ENV_COMPONENTS:
            value = env.get(f"{component.upper()}_VERSION")
            if value:
                versions[component] = value

        bind_port = _int(env, "BIND_PORT", DEFAULT_BIND_PORT)
        if not 0 < bind_port < 65536:
            raise ConfigurationError(f"BIND_PORT out of range: {bind_port}")

        values = dict(
            version_overrides=MappingProxyType(versions),
            kubeadm_config=env.get("KUBEADM_CONFIG") or None,
            advertise_address=env.get("ADVERTISE_ADDRESS") or DEFAULT_ADVERTISE_ADDRESS,
            bind_port=bind_port,
            join_url=env.get("JOIN_URL") or None,
            join_token=env.get("JOIN_TOKEN") or None,
            join_token_cacert_hash=env.get("JOIN_TOKEN_CACERT_HASH") or None,
            join_token_cert_key=env.get("JOIN_TOKEN_CERT_KEY") or None,
            join_as_control_plane=_flag(env.get("JOIN_ASCP")),
            debug=_flag(env.get("DEBUG")),
            arch=env.get("ARCH") or None,
            download_timeout=_float(env, "DOWNLOAD_TIMEOUT", DEFAULT_DOWNLOAD_TIMEOUT),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
        values.update(overrides)
        return cls(**values)

    def as_dict(self) -> Dict[str, Any]:
        """Return the configuration with secrets redacted, for logging."""
        from .utils import redact_sensitive_data

        return redact_sensitive_data({
            "version_overrides": dict(self.version_overrides),
            "kubeadm_config": self.kubeadm_config,
            "advertise_address": self.advertise_address,
            "bind_port": self.bind_port,
            "join_url": self.join_url,
            "join_token": self.join_token,
            "join_token_cacert_hash": self.join_token_cacert_hash,
            "join_token_cert_key": self.join_token_cert_key,
            "join_as_control_plane": self.join_as_control_plane,
            "debug": self.debug,
            "arch": self.arch,
            "download_timeout": self.download_timeout,
            "root": self.root,
        })
