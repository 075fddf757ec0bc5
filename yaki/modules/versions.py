"""Component version resolution against the compatibility matrix."""
import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from ..errors import UnknownComponent

logger = logging.getLogger(__name__)

# Known-good version set
COMPATIBILITY_MATRIX: Mapping[str, str] = MappingProxyType({
    "kubernetes": "v1.30.2",
    "containerd": "v1.7.16",
    "runc": "v1.1.11",
    "cni": "v1.4.0",
    "crictl": "v1.29.0",
})


class VersionResolver:
    """Resolves component versions from overrides and a pinned matrix."""

    def __init__(
        self,
        matrix: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ):
        self.matrix = MappingProxyType(dict(COMPATIBILITY_MATRIX if matrix is None else matrix))
        self.overrides = MappingProxyType(dict(overrides or {}))

    def resolve(self, component: str, override: Optional[str] = None) -> str:
        """Resolve the version of a component.

        An explicit ``override`` wins, then an override configured on the
        resolver, then the matrix entry.

        Raises:
            UnknownComponent: If no override is given and the matrix has no entry
        """
        if override:
            return override
        configured = self.overrides.get(component)
        if configured:
            return configured
        try:
            return self.matrix[component]
        except KeyError:
            raise UnknownComponent(component)

    def resolve_all(self) -> Dict[str, str]:
        names = list(self.matrix) + [c for c in self.overrides if c not in self.matrix]
        return {name: self.resolve(name) for name in names}

    def log_versions(self) -> None:
        for name, version in self.resolve_all().items():
            source = "override" if self.overrides.get(name) else "matrix"
            logger.info(f"  - {name}: {version} ({source})")
