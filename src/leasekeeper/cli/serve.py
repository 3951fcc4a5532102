"""CLI command for running leader election and the status server.

Usage:
    leasekeeper serve --lease-name my-app
    leasekeeper serve --lease-name my-app -n prod --kubeconfig ~/.kube/config
    leasekeeper serve --lease-name my-app --backend redis --redis-url redis://cache:6379/0

Every option can also be set through LEASEKEEPER_* environment variables;
explicit options win.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import typer
from pydantic import ValidationError

from leasekeeper.config import Settings
from leasekeeper.errors import ClientBuildError, ConfigError, ServeError
from leasekeeper.observability import LogContext, configure_logging
from leasekeeper.runtime import build_runtime

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run leader election and the status server")


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def serve(
    identity: str | None = typer.Option(
        None,
        "--id",
        help="The holder identity (default: random UUID)",
    ),
    lease_name: str | None = typer.Option(
        None,
        "--lease-name",
        help="The lease name (required)",
    ),
    lease_duration: str | None = typer.Option(
        None,
        "--lease-duration",
        help="The duration of the lease, e.g. 10s",
    ),
    lease_renew_duration: str | None = typer.Option(
        None,
        "--lease-renew-duration",
        help="How long the leader keeps trying to refresh the lease, e.g. 5s",
    ),
    retry_period: str | None = typer.Option(
        None,
        "--retry-period",
        help="Interval between acquire and renew attempts, e.g. 3s",
    ),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="The lease namespace",
    ),
    kubeconfig: str | None = typer.Option(
        None,
        "--kubeconfig",
        help="Path to kubeconfig file, not relevant if running in-cluster",
    ),
    addr: str | None = typer.Option(
        None,
        "--addr",
        help="Address to serve http server on",
    ),
    grace_period: str | None = typer.Option(
        None,
        "--grace-period",
        help="How long in-flight requests may run after shutdown begins",
    ),
    release_on_cancel: bool | None = typer.Option(
        None,
        "--release-on-cancel/--no-release-on-cancel",
        help="Release the lease on shutdown while leading",
    ),
    backend: str | None = typer.Option(
        None,
        "--backend",
        help="Lease store: kubernetes, redis or memory",
    ),
    redis_url: str | None = typer.Option(
        None,
        "--redis-url",
        help="Redis URL for the redis backend",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
    log_format: str | None = typer.Option(
        None,
        "--log-format",
        help="Log format: json or console",
    ),
) -> None:
    """Run leader election and serve the current leader over HTTP.

    Exits non-zero without serving if the configuration is invalid or the
    lease store client cannot be built.
    """
    options: dict[str, Any] = {
        "identity": identity,
        "lease_name": lease_name,
        "lease_duration": lease_duration,
        "lease_renew_duration": lease_renew_duration,
        "retry_period": retry_period,
        "namespace": namespace,
        "kubeconfig": kubeconfig,
        "addr": addr,
        "grace_period": grace_period,
        "release_on_cancel": release_on_cancel,
        "backend": backend,
        "redis_url": redis_url,
        "log_level": log_level,
        "log_format": log_format,
    }
    overrides = {key: value for key, value in options.items() if value is not None}

    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        raise _fail(str(e)) from e

    configure_logging(json_format=settings.log_format == "json", level=settings.log_level)

    try:
        runtime = build_runtime(settings)
    except (ConfigError, ClientBuildError) as e:
        logger.error("Startup failed: %s", e)
        raise _fail(str(e)) from e

    with LogContext(holder_id=settings.identity, lease=f"{settings.namespace}/{settings.lease_name}"):
        logger.info(
            "Starting leasekeeper on %s (backend %s, identity %s)",
            settings.addr,
            settings.backend,
            settings.identity,
        )
        try:
            asyncio.run(runtime.run())
        except ServeError as e:
            logger.error("Serving failed: %s", e)
            raise _fail(str(e)) from e
