import hashlib
import io
import os
import subprocess
import tarfile

import pytest
import requests

from yaki.errors import CommandFailed
from yaki.modules import installer
from yaki.modules.models import HostEnvironment
from yaki.utils import CommandRunner

ELF = b"\x7fELF" + b"\x00" * 60


# ----------------- Fakes -----------------

class FakeRunner(CommandRunner):
    """Records commands instead of running them."""

    def __init__(self, responses=None, missing=()):
        self.calls = []
        self.responses = dict(responses or {})
        self.missing = set(missing)

    def _response(self, args):
        normalized = [os.path.basename(args[0])] + list(args[1:])
        for key, value in self.responses.items():
            if tuple(normalized[:len(key)]) == key:
                return value
        return (0, "", "")

    def run(self, args, check=True, capture=True, input_text=None):
        args = list(args)
        self.calls.append(args)
        rc, out, err = self._response(args)
        if rc != 0 and check:
            raise CommandFailed(args, rc, err)
        return subprocess.CompletedProcess(args, rc, out, err)

    def which(self, name):
        return None if name in self.missing else f"/usr/bin/{name}"

    def commands(self):
        return [" ".join([os.path.basename(c[0])] + c[1:]) for c in self.calls]


class FakeResponse:
    def __init__(self, content=b"", status_code=200, headers=None, error=None):
        self.content = content
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Length": str(len(content))}
        self.error = error
        self.closed = False

    @property
    def text(self):
        return self.content.decode("utf-8")

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        if self.error:
            raise self.error
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses by URL; unknown URLs are 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requested = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(b"not found", status_code=404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, bytes):
            return FakeResponse(route)
        return route


def make_tarball(files):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha256(data):
    return hashlib.sha256(data).hexdigest()


def release_routes(versions, arch="amd64"):
    """Routes for every artifact a full installation plan downloads."""
    routes = {}

    runc = installer.runc_artifact(versions["runc"], arch)
    routes[runc.url] = ELF
    routes[runc.checksum_url] = (
        f"{sha256(ELF)}  runc.{arch}\n{'0' * 64}  runc.arm64\n"
    ).encode()

    cni = installer.cni_artifact(versions["cni"], arch)
    routes[cni.url] = make_tarball({"./loopback": ELF, "./bridge": ELF})

    containerd = installer.containerd_artifact(versions["containerd"], arch)
    containerd_tar = make_tarball({"bin/containerd": ELF, "bin/ctr": ELF})
    routes[containerd.url] = containerd_tar
    routes[containerd.checksum_url] = f"{sha256(containerd_tar)}  {containerd.filename}\n".encode()
    routes[installer.CONTAINERD_UNIT_URL] = b"[Unit]\nDescription=containerd\n\n[Service]\nExecStart=/usr/local/bin/containerd\n"

    crictl = installer.crictl_artifact(versions["crictl"], arch)
    routes[crictl.url] = make_tarball({"crictl": ELF})

    for name in installer.KUBE_BINARIES:
        artifact = installer.kube_artifact(name, versions["kubernetes"], arch)
        routes[artifact.url] = ELF
        routes[artifact.checksum_url] = sha256(ELF).encode()
    ref = installer.KUBE_RELEASE_TEMPLATES
    routes[installer.KUBELET_UNIT_URL.format(ref=ref)] = b"[Service]\nExecStart=/usr/bin/kubelet\n"
    routes[installer.KUBELET_DROPIN_URL.format(ref=ref)] = b"[Service]\nExecStart=\nExecStart=/usr/bin/kubelet $KUBELET_ARGS\n"
    return routes


# ----------------- Fixtures -----------------

CONTAINERD_DEFAULT_CONFIG = (
    "version = 2\n"
    "[plugins.\"io.containerd.grpc.v1.cri\".containerd.runtimes.runc.options]\n"
    "  SystemdCgroup = false\n"
)


@pytest.fixture
def runner():
    return FakeRunner(responses={
        ("containerd", "config", "default"): (0, CONTAINERD_DEFAULT_CONFIG, ""),
    })


@pytest.fixture
def host():
    return HostEnvironment(arch="amd64", os_family="linux", is_root=True)


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "host"
    path.mkdir()
    return path
