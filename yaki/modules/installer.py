"""Container runtime, CNI and Kubernetes binary installation.

This module downloads versioned release artifacts, verifies each transfer
and installs the result to fixed host paths. Every component is recorded in
an install manifest so that re-running a plan skips what is already in
place.
"""

import hashlib
import logging
import os
import tarfile
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import requests
import yaml

from ..errors import DownloadTimeout, InstallationFailed, YakiError
from ..utils import CommandRunner, host_path, read_yaml_file, write_yaml_file
from .models import InstallationPlan, InstallStep
from .versions import VersionResolver

logger = logging.getLogger(__name__)

BIN_DIR = "/usr/local/bin"
SBIN_DIR = "/usr/local/sbin"
SERVICE_DIR = "/etc/systemd/system"
CONTAINERD_UNIT = "/usr/local/lib/systemd/system/containerd.service"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
CNI_BIN_DIR = "/opt/cni/bin"
CRICTL_CONFIG = "/etc/crictl.yaml"
KUBELET_UNIT = f"{SERVICE_DIR}/kubelet.service"
KUBELET_DROPIN = f"{SERVICE_DIR}/kubelet.service.d/10-kubeadm.conf"
MANIFEST = "/var/lib/yaki/installed.yaml"

CONTAINERD_SOCKET = "unix:///var/run/containerd/containerd.sock"
KUBE_RELEASE_TEMPLATES = "v0.16.2"

CONTAINERD_UNIT_URL = "https://raw.githubusercontent.com/containerd/containerd/main/containerd.service"
KUBELET_UNIT_URL = (
    "https://raw.githubusercontent.com/kubernetes/release/{ref}"
    "/cmd/krel/templates/latest/kubelet/kubelet.service"
)
KUBELET_DROPIN_URL = (
    "https://raw.githubusercontent.com/kubernetes/release/{ref}"
    "/cmd/krel/templates/latest/kubeadm/10-kubeadm.conf"
)

KUBE_BINARIES = ("kubeadm", "kubelet", "kubectl")

CHUNK_SIZE = 1024 * 1024
ELF_MAGIC = b"\x7fELF"

# Files whose presence means a component is installed
COMPONENT_TARGETS: Dict[str, List[str]] = {
    "runc": [f"{SBIN_DIR}/runc"],
    "cni": [f"{CNI_BIN_DIR}/loopback"],
    "containerd": [f"{BIN_DIR}/containerd", CONTAINERD_UNIT, CONTAINERD_CONFIG],
    "crictl": [f"{BIN_DIR}/crictl", CRICTL_CONFIG],
    "kubernetes": [f"{BIN_DIR}/{name}" for name in KUBE_BINARIES] + [KUBELET_UNIT, KUBELET_DROPIN],
}


@dataclass(frozen=True)
class Artifact:
    """A downloadable release file."""
    component: str
    url: str
    checksum_url: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.url.rsplit("/", 1)[-1]


def containerd_artifact(version: str, arch: str) -> Artifact:
    url = (
        f"https://github.com/containerd/containerd/releases/download/{version}/"
        f"containerd-{version.lstrip('v')}-linux-{arch}.tar.gz"
    )
    return Artifact("containerd", url, f"{url}.sha256sum")


def runc_artifact(version: str, arch: str) -> Artifact:
    base = f"https://github.com/opencontainers/runc/releases/download/{version}"
    return Artifact("runc", f"{base}/runc.{arch}", f"{base}/runc.sha256sum")


def cni_artifact(version: str, arch: str) -> Artifact:
    url = (
        f"https://github.com/containernetworking/plugins/releases/download/{version}/"
        f"cni-plugins-linux-{arch}-{version}.tgz"
    )
    return Artifact("cni", url, f"{url}.sha256")


def crictl_artifact(version: str, arch: str) -> Artifact:
    url = (
        f"https://github.com/kubernetes-sigs/cri-tools/releases/download/{version}/"
        f"crictl-{version}-linux-{arch}.tar.gz"
    )
    return Artifact("crictl", url, f"{url}.sha256")


def kube_artifact(name: str, version: str, arch: str) -> Artifact:
    url = f"https://dl.k8s.io/release/{version}/bin/linux/{arch}/{name}"
    return Artifact("kubernetes", url, f"{url}.sha256")


def parse_checksum(text: str, filename: str) -> Optional[str]:
    """Extract the SHA-256 for ``filename`` from a checksum file.

    Accepts a bare digest, a single ``<digest>  <name>`` line, or a
    multi-line sha256sum listing.
    """
    lines = [line.split() for line in text.splitlines() if line.strip()]
    if len(lines) == 1 and len(lines[0]) == 1:
        return lines[0][0].lower()
    for tokens in lines:
        if len(tokens) >= 2 and os.path.basename(tokens[1].lstrip("*")) == filename:
            return tokens[0].lower()
    if len(lines) == 1:
        return lines[0][0].lower()
    return None


def insert_environment_file(unit: str, env_file: str = "/etc/environment") -> str:
    """Add ``EnvironmentFile=`` right after ``[Service]`` unless already present."""
    directive = f"EnvironmentFile={env_file}"
    lines = unit.splitlines()
    if directive in (line.strip() for line in lines):
        return unit
    result = []
    for line in lines:
        result.append(line)
        if line.strip() == "[Service]":
            result.append(directive)
    return "\n".join(result) + "\n"


def enable_systemd_cgroup(config: str) -> str:
    return config.replace("SystemdCgroup = false", "SystemdCgroup = true")


class Downloader:
    """Fetches artifacts over HTTP and rejects empty or corrupt transfers."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 300.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, component: str, url: str, stream: bool = False) -> requests.Response:
        try:
            response = self.session.get(url, stream=stream, timeout=self.timeout)
            response.raise_for_status()
            return response
        except requests.Timeout as e:
            raise DownloadTimeout(component, url, self.timeout) from e
        except requests.RequestException as e:
            raise InstallationFailed(component, f"download of {url} failed: {e}") from e

    def fetch_text(self, component: str, url: str) -> str:
        text = self._get(component, url).text
        if not text.strip():
            raise InstallationFailed(component, f"empty response from {url}")
        return text

    def published_checksum(self, artifact: Artifact) -> Optional[str]:
        if not artifact.checksum_url:
            return None
        try:
            response = self.session.get(artifact.checksum_url, timeout=self.timeout)
        except requests.Timeout as e:
            raise DownloadTimeout(artifact.component, artifact.checksum_url, self.timeout) from e
        except requests.RequestException as e:
            raise InstallationFailed(artifact.component, f"checksum download failed: {e}") from e
        if response.status_code == 404:
            logger.warning(f"⚠️  No published checksum for {artifact.filename}, verifying size only")
            return None
        try:
            response.raise_for_status()
        except requests.RequestException as e:
            raise InstallationFailed(artifact.component, f"checksum download failed: {e}") from e
        return parse_checksum(response.text, artifact.filename)

    def fetch(self, artifact: Artifact, dest_dir: Path) -> Path:
        """Download an artifact into ``dest_dir`` and verify it.

        Raises:
            DownloadTimeout: If the server stalls past the timeout
            InstallationFailed: If the transfer is empty, truncated or fails
                checksum verification
        """
        expected = self.published_checksum(artifact)
        dest = dest_dir / artifact.filename
        logger.debug(f"Downloading {artifact.url}")

        response = self._get(artifact.component, artifact.url, stream=True)
        digest = hashlib.sha256()
        size = 0
        try:
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)
        except requests.Timeout as e:
            raise DownloadTimeout(artifact.component, artifact.url, self.timeout) from e
        except requests.RequestException as e:
            raise InstallationFailed(artifact.component, f"transfer of {artifact.url} failed: {e}") from e
        finally:
            response.close()

        if size == 0:
            raise InstallationFailed(artifact.component, f"empty download from {artifact.url}")

        declared = response.headers.get("Content-Length")
        encoded = response.headers.get("Content-Encoding")
        if declared and not encoded and declared.isdigit() and int(declared) != size:
            raise InstallationFailed(
                artifact.component,
                f"truncated download of {artifact.filename}: got {size} of {declared} bytes",
            )

        if expected and digest.hexdigest() != expected:
            raise InstallationFailed(
                artifact.component,
                f"checksum mismatch for {artifact.filename}: expected {expected}, got {digest.hexdigest()}",
            )

        logger.debug(f"Downloaded {artifact.filename} ({size} bytes)")
        return dest


def _safe_members(archive: tarfile.TarFile, dest: Path) -> List[tarfile.TarInfo]:
    members = archive.getmembers()
    root = dest.resolve()
    for member in members:
        target = (dest / member.name).resolve()
        if member.name.startswith("/") or not (target == root or root in target.parents):
            raise tarfile.TarError(f"unsafe path in archive: {member.name}")
        if member.issym() or member.islnk():
            raise tarfile.TarError(f"link in archive: {member.name}")
    return members


def extract_archive(component: str, archive_path: Path, dest: Path) -> None:
    """Extract a gzip tarball, treating unreadable archives as corrupt transfers."""
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:gz") as archive:
            if hasattr(tarfile, "data_filter"):
                archive.extractall(dest, filter="data")
            else:
                archive.extractall(dest, members=_safe_members(archive, dest))
    except (tarfile.TarError, EOFError, zlib.error) as e:
        raise InstallationFailed(component, f"corrupt archive {archive_path.name}: {e}") from e


def install_binary(component: str, source: Path, target: Path, mode: int = 0o755) -> None:
    with open(source, "rb") as f:
        if f.read(4) != ELF_MAGIC:
            raise InstallationFailed(component, f"{source.name} is not an executable")
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.tmp")
    with open(source, "rb") as src, open(tmp, "wb") as dst:
        while True:
            block = src.read(CHUNK_SIZE)
            if not block:
                break
            dst.write(block)
    os.chmod(tmp, mode)
    os.replace(tmp, target)


class ComponentInstaller:
    """Installs the node's runtime and Kubernetes components."""

    def __init__(
        self,
        runner: CommandRunner,
        downloader: Downloader,
        arch: str,
        root: str = "/",
    ):
        self.runner = runner
        self.downloader = downloader
        self.arch = arch
        self.root = root

    def path(self, path: str) -> Path:
        return host_path(self.root, path)

    # Manifest

    def _manifest(self) -> Dict[str, str]:
        data = read_yaml_file(self.path(MANIFEST))
        return dict(data.get("components") or {})

    def _record(self, component: str, version: str) -> None:
        components = self._manifest()
        components[component] = version
        write_yaml_file(self.path(MANIFEST), {"components": components})

    def is_installed(self, component: str, version: str) -> bool:
        """True when the manifest records this version and its files exist."""
        if self._manifest().get(component) != version:
            return False
        return all(self.path(p).exists() for p in COMPONENT_TARGETS.get(component, []))

    # Services

    def _enable_service(self, unit: str, restart: bool = False) -> None:
        self.runner.run(["systemctl", "daemon-reload"])
        self.runner.run(["systemctl", "enable", "--now", unit])
        if restart:
            self.runner.run(["systemctl", "restart", unit])

    def _write_text(self, path: str, content: str, mode: int = 0o644) -> None:
        target = self.path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        os.chmod(target, mode)

    # Components

    def install_runc(self, version: str) -> None:
        logger.info(f"📦 installing runc {version}")
        with tempfile.TemporaryDirectory(prefix="yaki-") as tmp:
            binary = self.downloader.fetch(runc_artifact(version, self.arch), Path(tmp))
            install_binary("runc", binary, self.path(f"{SBIN_DIR}/runc"))

    def install_cni(self, version: str) -> None:
        logger.info(f"📦 installing CNI plugins {version}")
        with tempfile.TemporaryDirectory(prefix="yaki-") as tmp:
            archive = self.downloader.fetch(cni_artifact(version, self.arch), Path(tmp))
            extract_archive("cni", archive, self.path(CNI_BIN_DIR))

    def install_containerd(self, version: str) -> None:
        logger.info(f"📦 installing containerd {version}")
        with tempfile.TemporaryDirectory(prefix="yaki-") as tmp:
            archive = self.downloader.fetch(containerd_artifact(version, self.arch), Path(tmp))
            extract_archive("containerd", archive, self.path("/usr/local"))

        unit = self.downloader.fetch_text("containerd", CONTAINERD_UNIT_URL)
        self._write_text(CONTAINERD_UNIT, insert_environment_file(unit))

        logger.info("configuring systemd cgroup driver in containers")
        containerd_bin = str(self.path(f"{BIN_DIR}/containerd"))
        default_config = self.runner.run([containerd_bin, "config", "default"]).stdout
        self._write_text(CONTAINERD_CONFIG, enable_systemd_cgroup(default_config))

        self._enable_service("containerd", restart=True)

    def install_crictl(self, version: str) -> None:
        logger.info(f"📦 installing crictl {version}")
        with tempfile.TemporaryDirectory(prefix="yaki-") as tmp:
            archive = self.downloader.fetch(crictl_artifact(version, self.arch), Path(tmp))
            extract_archive("crictl", archive, self.path(BIN_DIR))
        crictl_config = {
            "runtime-endpoint": CONTAINERD_SOCKET,
            "image-endpoint": CONTAINERD_SOCKET,
            "timeout": 10,
        }
        self._write_text(CRICTL_CONFIG, yaml.safe_dump(crictl_config, sort_keys=False))

    def install_kubernetes(self, version: str) -> None:
        logger.info(f"📦 installing kubeadm, kubelet and kubectl {version}")
        with tempfile.TemporaryDirectory(prefix="yaki-") as tmp:
            for name in KUBE_BINARIES:
                binary = self.downloader.fetch(kube_artifact(name, version, self.arch), Path(tmp))
                install_binary("kubernetes", binary, self.path(f"{BIN_DIR}/{name}"))

        unit = self.downloader.fetch_text(
            "kubernetes", KUBELET_UNIT_URL.format(ref=KUBE_RELEASE_TEMPLATES))
        dropin = self.downloader.fetch_text(
            "kubernetes", KUBELET_DROPIN_URL.format(ref=KUBE_RELEASE_TEMPLATES))
        self._write_text(KUBELET_UNIT, unit.replace("/usr/bin", BIN_DIR))
        self._write_text(KUBELET_DROPIN, dropin.replace("/usr/bin", BIN_DIR))
        self._enable_service("kubelet")

    # Plans

    def plan(self, resolver: VersionResolver) -> InstallationPlan:
        """Build the ordered installation plan for a node."""
        plan = InstallationPlan()
        plan.add(InstallStep("runc", resolver.resolve("runc"), self.install_runc,
                             "OCI runtime"))
        plan.add(InstallStep("cni", resolver.resolve("cni"), self.install_cni,
                             "CNI plugins"))
        plan.add(InstallStep("containerd", resolver.resolve("containerd"), self.install_containerd,
                             "container runtime"))
        plan.add(InstallStep("crictl", resolver.resolve("crictl"), self.install_crictl,
                             "CRI command-line tool"))
        plan.add(InstallStep("kubernetes", resolver.resolve("kubernetes"), self.install_kubernetes,
                             "kubeadm, kubelet and kubectl"))
        return plan

    def run(self, plan: InstallationPlan) -> List[str]:
        """Execute a plan, stopping at the first failure.

        Returns:
            Components that were installed (skipped ones are not listed)

        Raises:
            InstallationFailed: If any step fails
        """
        installed = []
        for step in plan:
            if self.is_installed(step.component, step.version):
                logger.info(f"✅ {step.component} {step.version} already installed, skipping")
                continue
            try:
                step.run()
            except InstallationFailed:
                raise
            except (YakiError, OSError, yaml.YAMLError) as e:
                raise InstallationFailed(step.component, e) from e
            self._record(step.component, step.version)
            installed.append(step.component)
            logger.info(f"✅ {step.component} {step.version} installed")
        return installed
