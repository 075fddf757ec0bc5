import logging

import pytest
from typer.testing import CliRunner

from yaki import cli
from yaki.errors import MissingCredential
from yaki.modules.models import CleanupReport, ClusterState, StepResult, StepStatus

ENV_VARS = (
    "DEBUG", "LOG_LEVEL", "BIND_PORT", "DOWNLOAD_TIMEOUT", "KUBEADM_CONFIG",
    "JOIN_URL", "JOIN_TOKEN", "JOIN_TOKEN_CACERT_HASH", "JOIN_TOKEN_CERT_KEY", "JOIN_ASCP",
)

runner = CliRunner()


class FakeOrchestrator:
    def __init__(self, report=None, error=None):
        self.calls = []
        self.report = report or CleanupReport()
        self.error = error

    def _call(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.error:
            raise self.error

    def setup(self):
        self._call("setup")

    def init(self, wait=False, wait_timeout=300):
        self._call("init", wait=wait, wait_timeout=wait_timeout)
        return ClusterState.CONTROL_PLANE_READY

    def join(self):
        self._call("join")
        return ClusterState.JOINED

    def reset(self, reboot=True):
        self._call("reset", reboot=reboot)
        return self.report


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    handlers = logging.root.handlers[:]
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
    cli.debug_mode = False


@pytest.fixture
def orchestrator(monkeypatch):
    fake = FakeOrchestrator()
    monkeypatch.setattr(cli, "build_orchestrator", lambda: fake)
    return fake


def test_help():
    result = runner.invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    assert "Usage" in result.output
    for verb in ("setup", "init", "join", "reset", "help"):
        assert verb in result.output


def test_no_verb_prints_usage_and_fails():
    result = runner.invoke(cli.app, [])
    assert result.exit_code == 1
    assert "Usage" in result.output
    assert "JOIN_TOKEN_CACERT_HASH" in result.output


def test_unknown_verb_fails():
    result = runner.invoke(cli.app, ["upgrade"])
    assert result.exit_code != 0


def test_help_verb_lists_environment():
    result = runner.invoke(cli.app, ["help"])
    assert result.exit_code == 0
    assert "KUBERNETES_VERSION" in result.output
    assert "JOIN_ASCP" in result.output


def test_setup_dispatches(orchestrator):
    result = runner.invoke(cli.app, ["setup"])
    assert result.exit_code == 0
    assert orchestrator.calls == [("setup", {})]


def test_init_wait_options(orchestrator):
    result = runner.invoke(cli.app, ["init", "--wait", "--wait-timeout", "60"])
    assert result.exit_code == 0
    assert orchestrator.calls == [("init", {"wait": True, "wait_timeout": 60})]


def test_join_error_exits_1(orchestrator):
    orchestrator.error = MissingCredential("CACertHash")
    result = runner.invoke(cli.app, ["join"])
    assert result.exit_code == 1
    assert orchestrator.calls == [("join", {})]


def test_reset_defaults_to_reboot(orchestrator):
    result = runner.invoke(cli.app, ["reset"])
    assert result.exit_code == 0
    assert orchestrator.calls == [("reset", {"reboot": True})]


def test_reset_no_reboot_with_failures_still_exits_0(orchestrator):
    orchestrator.report = CleanupReport([
        StepResult("kubeadm-reset", StepStatus.FAILED, "boom"),
        StepResult("reboot", StepStatus.SKIPPED),
    ])
    result = runner.invoke(cli.app, ["reset", "--no-reboot"])
    assert result.exit_code == 0
    assert orchestrator.calls == [("reset", {"reboot": False})]


def test_malformed_environment_exits_1(monkeypatch, orchestrator):
    monkeypatch.setenv("BIND_PORT", "not-a-port")
    result = runner.invoke(cli.app, ["setup"])
    assert result.exit_code == 1
    assert orchestrator.calls == []


def test_debug_flag_enables_debug_mode(orchestrator):
    result = runner.invoke(cli.app, ["--debug", "setup"])
    assert result.exit_code == 0
    assert cli.debug_mode is True
