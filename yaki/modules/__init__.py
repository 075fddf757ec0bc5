"""
Node lifecycle modules.
"""
from .installer import ComponentInstaller, Downloader
from .kubeadm import ClusterLifecycleManager
from .orchestrator import Orchestrator
from .preflight import PreflightChecker, detect_host
from .system import SystemConfigurator
from .versions import COMPATIBILITY_MATRIX, VersionResolver

__all__ = [
    'ComponentInstaller',
    'Downloader',
    'ClusterLifecycleManager',
    'Orchestrator',
    'PreflightChecker',
    'detect_host',
    'SystemConfigurator',
    'COMPATIBILITY_MATRIX',
    'VersionResolver',
]
