"""configmap-sync CLI entry point."""

import asyncio
import logging
import signal
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from configmap_sync import __version__
from configmap_sync.config import (
    DEFAULT_RELOAD_BURST,
    DEFAULT_RELOAD_METHOD,
    DEFAULT_RELOAD_RATE,
    SidecarConfig,
    parse_qualified_resource_name,
)
from configmap_sync.controller import create_coordinator
from configmap_sync.errors import (
    ProcessCrashError,
    SetupError,
    ShutdownError,
    SourceError,
)
from configmap_sync.source import ConfigSource, KubernetesConfigMapSource, load_core_api

# The child process shares stdout, keep our own output on stderr.
console = Console(stderr=True)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SHUTDOWN_ERROR = 1
EXIT_FATAL = 2

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


async def run_sidecar(config: SidecarConfig, source: ConfigSource | None = None) -> int:
    """Run the sidecar until shutdown and return the process exit code."""
    if source is None:
        try:
            core_api = load_core_api(config.in_cluster, config.kubeconfig)
        except SetupError as e:
            logger.error(f"Could not create the client: {e}")
            return EXIT_FATAL
        source = KubernetesConfigMapSource(core_api, config.namespace, config.name)

    try:
        coordinator = await create_coordinator(config, source)
    except SetupError as e:
        logger.error(str(e))
        return EXIT_FATAL

    shutdown_errors: list[ShutdownError] = []

    def on_signal(name: str) -> None:
        logger.info(f"Received {name}, shutting down")
        try:
            coordinator.stop()
        except ShutdownError as e:
            logger.error(f"Error during shutdown: {e}")
            shutdown_errors.append(e)

    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, on_signal, sig.name)

    try:
        await coordinator.run()
    except ProcessCrashError as e:
        logger.error(f"Exiting due to process failure: {e}")
        return EXIT_FATAL
    except (SetupError, SourceError) as e:
        logger.error(f"Exiting: {e}")
        return EXIT_FATAL
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    exit_code = EXIT_SHUTDOWN_ERROR if shutdown_errors else EXIT_OK
    logger.info(f"Exiting with {exit_code}")
    return exit_code


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """configmap-sync - mirror a ConfigMap into a directory and reload the workload."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@cli.command(context_settings={"allow_interspersed_args": False})
@click.option(
    "--configmap",
    "configmap",
    required=True,
    help="ConfigMap to watch, as NAMESPACE/NAME or NAME (namespace 'default')",
)
@click.option(
    "--configroot",
    "config_root",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory the ConfigMap entries are written to",
)
@click.option(
    "--running-in-cluster/--no-running-in-cluster",
    "in_cluster",
    default=True,
    help="Use the pod's service account to talk to the Kubernetes API",
)
@click.option(
    "--kubeconfig",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Kubeconfig file to use when not running in the cluster",
)
@click.option("--reload-url", help="Call this URL on change instead of signalling a child process")
@click.option(
    "--reload-method",
    default=DEFAULT_RELOAD_METHOD,
    show_default=True,
    help="HTTP method used with --reload-url",
)
@click.option(
    "--reload-rate",
    default=DEFAULT_RELOAD_RATE,
    show_default=True,
    type=float,
    help="Maximum reloads per second",
)
@click.option(
    "--reload-burst",
    default=DEFAULT_RELOAD_BURST,
    show_default=True,
    type=int,
    help="Reloads allowed back to back before rate limiting applies",
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def run(
    configmap: str,
    config_root: Path,
    in_cluster: bool,
    kubeconfig: Path | None,
    reload_url: str | None,
    reload_method: str,
    reload_rate: float,
    reload_burst: int,
    command: tuple[str, ...],
) -> None:
    """Watch a ConfigMap and keep CONFIGROOT in sync with it.

    Either pass --reload-url, or give the application command after `--`
    and it is started, sent SIGHUP on every change and killed on shutdown.
    """
    try:
        namespace, name = parse_qualified_resource_name(configmap)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--configmap") from e

    try:
        config = SidecarConfig(
            namespace=namespace,
            name=name,
            config_root=config_root,
            reload_url=reload_url,
            reload_method=reload_method,
            command=command[0] if command else None,
            args=tuple(command[1:]),
            reload_rate=reload_rate,
            reload_burst=reload_burst,
            in_cluster=in_cluster,
            kubeconfig=kubeconfig,
        )
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise click.UsageError(messages) from e

    raise SystemExit(asyncio.run(run_sidecar(config)))


@cli.command()
def version() -> None:
    """Show the configmap-sync version."""
    click.echo(f"configmap-sync {__version__}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
