import pytest

from yaki.errors import PrerequisiteMissing, UnsupportedArchitecture
from yaki.modules.models import HostEnvironment
from yaki.modules.preflight import REQUIRED_COMMANDS, PreflightChecker, detect_host, normalize_arch

from .conftest import FakeRunner


def checker(arch="amd64", is_root=True, missing=()):
    host = HostEnvironment(arch=arch, os_family="linux", is_root=is_root)
    return PreflightChecker(host, FakeRunner(missing=missing))


def test_passes_on_prepared_host():
    checker().run()


def test_requires_root():
    with pytest.raises(PrerequisiteMissing) as exc:
        checker(is_root=False).run()
    assert exc.value.name == "root"


@pytest.mark.parametrize("cmd", REQUIRED_COMMANDS)
def test_reports_first_missing_command(cmd):
    with pytest.raises(PrerequisiteMissing) as exc:
        checker(missing=[cmd]).run()
    assert exc.value.name == cmd


def test_rejects_unsupported_architecture():
    with pytest.raises(UnsupportedArchitecture) as exc:
        checker(arch="riscv64").run()
    assert exc.value.arch == "riscv64"


@pytest.mark.parametrize("machine,expected", [
    ("x86_64", "amd64"), ("amd64", "amd64"), ("aarch64", "arm64"), ("arm64", "arm64"), ("s390x", "s390x"),
])
def test_normalize_arch(machine, expected):
    assert normalize_arch(machine) == expected


def test_detect_host_honours_arch_override(monkeypatch):
    monkeypatch.setattr("platform.machine", lambda: "x86_64")
    assert detect_host("aarch64").arch == "arm64"
    assert detect_host().arch == "amd64"


def test_valid_kubeadm_config(tmp_path):
    path = tmp_path / "kubeadm.yaml"
    path.write_text(
        "apiVersion: kubeadm.k8s.io/v1beta3\n"
        "kind: ClusterConfiguration\n"
        "controlPlaneEndpoint: 10.0.0.1:6443\n"
        "---\n"
        "apiVersion: kubeadm.k8s.io/v1beta3\n"
        "kind: InitConfiguration\n"
    )
    checker().run(kubeadm_config=str(path))


@pytest.mark.parametrize("content", [
    "",
    "kind: ClusterConfiguration\n",
    "apiVersion: v1\nkind: ConfigMap\n",
    "apiVersion: kubeadm.k8s.io/v1beta3\nkind: [unterminated\n",
])
def test_invalid_kubeadm_config(tmp_path, content):
    path = tmp_path / "kubeadm.yaml"
    path.write_text(content)
    with pytest.raises(PrerequisiteMissing) as exc:
        checker().run(kubeadm_config=str(path))
    assert exc.value.name == "KUBEADM_CONFIG"


def test_missing_kubeadm_config(tmp_path):
    with pytest.raises(PrerequisiteMissing):
        checker().check_kubeadm_config(str(tmp_path / "absent.yaml"))
