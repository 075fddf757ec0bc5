import dataclasses

import pytest

from yaki.config import Config
from yaki.errors import ConfigurationError


def test_defaults_from_empty_environment():
    config = Config.from_env({})
    assert config.advertise_address == "0.0.0.0"
    assert config.bind_port == 6443
    assert config.join_url is None
    assert config.kubeadm_config is None
    assert config.join_as_control_plane is False
    assert config.debug is False
    assert dict(config.version_overrides) == {}


def test_reads_all_variables():
    config = Config.from_env({
        "KUBERNETES_VERSION": "v1.29.4",
        "CONTAINERD_VERSION": "v1.7.20",
        "RUNC_VERSION": "v1.1.12",
        "CNI_VERSION": "v1.5.0",
        "CRICTL_VERSION": "v1.30.0",
        "KUBEADM_CONFIG": "/etc/kubeadm.yaml",
        "ADVERTISE_ADDRESS": "10.0.0.5",
        "BIND_PORT": "7443",
        "JOIN_URL": "10.0.0.1:6443",
        "JOIN_TOKEN": "abcdef.0123456789abcdef",
        "JOIN_TOKEN_CACERT_HASH": "sha256:xyz",
        "JOIN_TOKEN_CERT_KEY": "key",
        "JOIN_ASCP": "1",
        "DEBUG": "1",
        "ARCH": "arm64",
        "DOWNLOAD_TIMEOUT": "60",
    })
    assert dict(config.version_overrides) == {
        "kubernetes": "v1.29.4",
        "containerd": "v1.7.20",
        "runc": "v1.1.12",
        "cni": "v1.5.0",
        "crictl": "v1.30.0",
    }
    assert config.kubeadm_config == "/etc/kubeadm.yaml"
    assert config.advertise_address == "10.0.0.5"
    assert config.bind_port == 7443
    assert config.join_url == "10.0.0.1:6443"
    assert config.join_as_control_plane is True
    assert config.debug is True
    assert config.arch == "arm64"
    assert config.download_timeout == 60.0


@pytest.mark.parametrize("value,expected", [
    ("1", True), ("true", True), ("YES", True), ("on", True),
    ("0", False), ("", False), ("false", False),
])
def test_join_ascp_flag(value, expected):
    assert Config.from_env({"JOIN_ASCP": value}).join_as_control_plane is expected


@pytest.mark.parametrize("env", [
    {"BIND_PORT": "http"},
    {"BIND_PORT": "70000"},
    {"DOWNLOAD_TIMEOUT": "soon"},
    {"DOWNLOAD_TIMEOUT": "-1"},
])
def test_malformed_values(env):
    with pytest.raises(ConfigurationError):
        Config.from_env(env)


def test_config_is_immutable():
    config = Config.from_env({"KUBERNETES_VERSION": "v1.29.4"})
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.join_url = "10.0.0.1:6443"
    with pytest.raises(TypeError):
        config.version_overrides["kubernetes"] = "v1.31.0"


def test_overrides_win_over_environment():
    config = Config.from_env({"DEBUG": "0"}, debug=True, root="/tmp/host")
    assert config.debug is True
    assert config.root == "/tmp/host"


def test_as_dict_redacts_secrets():
    config = Config.from_env({"JOIN_TOKEN": "abcdef.0123456789abcdef", "JOIN_TOKEN_CERT_KEY": "secret-key"})
    data = config.as_dict()
    assert data["join_token"] == "[REDACTED]"
    assert data["join_token_cert_key"] == "[REDACTED]"
    assert "abcdef.0123456789abcdef" not in str(data)
