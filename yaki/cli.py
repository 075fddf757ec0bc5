import logging
import traceback
from typing import Callable, TypeVar

import typer

from .config import Config
from .errors import YakiError
from .logging import setup_logging
from .modules.orchestrator import Orchestrator
from .modules.preflight import detect_host

logger = logging.getLogger("yaki")

T = TypeVar("T")

ENVIRONMENT_HELP = """\
Environment variables:

  KUBERNETES_VERSION      Version of kubernetes to install (default v1.30.2)
  CONTAINERD_VERSION      Version of containerd (default: see matrix)
  RUNC_VERSION            Version of runc (default: see matrix)
  CNI_VERSION             Version of the CNI plugins (default: see matrix)
  CRICTL_VERSION          Version of crictl (default: see matrix)
  KUBEADM_CONFIG          Path to the kubeadm config file to use
  ADVERTISE_ADDRESS       Address to advertise for the api-server (default 0.0.0.0)
  BIND_PORT               Port to use for the api-server (default 6443)
  JOIN_URL                Control-plane endpoint to init or join (host:port)
  JOIN_TOKEN              Token to join the control-plane
  JOIN_TOKEN_CACERT_HASH  CA certificate hash to join the control-plane
  JOIN_TOKEN_CERT_KEY     Certificate key to join as control plane
  JOIN_ASCP               Set to 1 to join as control plane instead of worker
  DOWNLOAD_TIMEOUT        Seconds before a stalled download fails (default 300)
  DEBUG                   Set to 1 for more verbosity
  ARCH                    Override the detected architecture (amd64, arm64)
"""

app = typer.Typer(
    help="yaki - install Kubernetes on this host and init, join or reset the node.",
    add_completion=False,
    invoke_without_command=True,
)

# Global debug flag
debug_mode = False


def build_orchestrator() -> Orchestrator:
    """Create an orchestrator for this host from the environment."""
    overrides = {"debug": True} if debug_mode else {}
    config = Config.from_env(**overrides)
    logger.debug(f"Configuration: {config.as_dict()}")
    return Orchestrator(config, detect_host(config.arch))


def _run(action: Callable[[Orchestrator], T]) -> T:
    try:
        return action(build_orchestrator())
    except YakiError as e:
        if debug_mode:
            logger.error(f"{e}\n{traceback.format_exc()}")
        else:
            logger.error(f"❌ {e}")
        raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """yaki - Kubernetes node lifecycle tool."""
    global debug_mode
    try:
        env_config = Config.from_env()
    except YakiError as e:
        setup_logging(debug)
        logger.error(f"❌ {e}")
        raise typer.Exit(1)
    debug_mode = debug or env_config.debug
    setup_logging(debug_mode, env_config.log_level)
    if debug_mode:
        logging.debug("Debug mode enabled")

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        typer.echo("")
        typer.echo(ENVIRONMENT_HELP)
        typer.echo("Error: use command: setup|init|join|reset|help", err=True)
        raise typer.Exit(1)


@app.command()
def setup():
    """Install prerequisites, container runtime and Kubernetes binaries."""
    _run(lambda o: o.setup())
    logger.info("setup completed successfully")


@app.command()
def init(
    wait: bool = typer.Option(False, "--wait", help="Wait for the control plane to report a Ready node"),
    wait_timeout: int = typer.Option(300, "--wait-timeout", help="Seconds to wait with --wait"),
):
    """Deploy the first control-plane node of the cluster.

    Uses KUBEADM_CONFIG when set, otherwise JOIN_URL, otherwise the first
    host address.
    """
    _run(lambda o: o.init(wait=wait, wait_timeout=wait_timeout))
    logger.info("init completed successfully")


@app.command()
def join():
    """Join this node to an existing cluster.

    Requires JOIN_URL, JOIN_TOKEN and JOIN_TOKEN_CACERT_HASH; with JOIN_ASCP=1
    also JOIN_TOKEN_CERT_KEY.
    """
    _run(lambda o: o.join())
    logger.info("join completed successfully")


@app.command()
def reset(
    reboot: bool = typer.Option(True, "--reboot/--no-reboot", help="Reboot the machine once cleanup is done"),
):
    """Remove all Kubernetes components and configuration from this node."""
    report = _run(lambda o: o.reset(reboot=reboot))
    if report.failures:
        logger.warning(f"⚠️  reset finished with {len(report.failures)} failed step(s): {report.summary()}")
    else:
        logger.info("reset completed successfully")


@app.command("help")
def show_help(ctx: typer.Context):
    """Print this help."""
    typer.echo(ctx.parent.get_help())
    typer.echo("")
    typer.echo(ENVIRONMENT_HELP)


if __name__ == "__main__":
    app()
