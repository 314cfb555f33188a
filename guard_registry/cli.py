from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
import uvicorn

from guard_core import ConfigError, PublishRejectedError, SecurityFilter, load_config

from .api import make_app
from .settings import GuardSettings, load_env_file

app = typer.Typer(help="Registry Guard: security policy proxy for npm registries")


def _load_filter(config: str | None, settings: GuardSettings | None = None) -> SecurityFilter:
    path = config or (settings.config_path if settings else "security.yml")
    try:
        return SecurityFilter(load_config(path))
    except ConfigError as e:
        typer.echo(f"ERROR loading policy {path}: {e}")
        raise typer.Exit(2)


@app.command("serve")
def serve(
    host: str = typer.Option(None, "--host"),
    port: int = typer.Option(None, "--port"),
    config: str = typer.Option(None, "--config", help="Path to the YAML policy file"),
    env_file: str = typer.Option(None, "--env-file", help="Path to .env (default: ./.env)"),
):
    """
    Start the guard server in front of the upstream registry.
    """
    used_env = load_env_file(env_file)
    settings = GuardSettings.from_env(env_file=env_file)

    host = host or settings.host
    port = port or settings.port

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    security_filter = _load_filter(config, settings)
    api_app = make_app(settings, security_filter=security_filter)

    typer.echo(f"Starting registry guard on http://{host}:{port}  (env: {used_env}, upstream: {settings.upstream_url})")
    uvicorn.run(api_app, host=host, port=port, log_level=settings.log_level.lower())


@app.command("check")
def check(
    spec: str = typer.Argument(..., help="package or package@version"),
    config: str = typer.Option("security.yml", "--config"),
):
    """Run the fast-path checks for a package reference."""
    name, version = _split_spec(spec)
    decision = _load_filter(config).check(name, version)
    if decision.blocked:
        by = decision.blocked_by.value if decision.blocked_by else "unknown"
        typer.echo(f"BLOCKED {spec}: {decision.reason} [{by}]")
        raise typer.Exit(1)
    typer.echo(f"ALLOWED {spec}")


@app.command("validate-publish")
def validate_publish(
    spec: str = typer.Argument(..., help="package@version"),
    size: int = typer.Option(None, "--size", help="Tarball size in bytes"),
    config: str = typer.Option("security.yml", "--config"),
):
    """Check whether a publish would be accepted."""
    name, version = _split_spec(spec)
    if not version:
        typer.echo("ERROR: a version is required (package@version)")
        raise typer.Exit(2)
    try:
        _load_filter(config).validate_publish(name, version, size)
    except PublishRejectedError as e:
        typer.echo(f"REJECTED {spec}: {e}")
        raise typer.Exit(1)
    typer.echo(f"OK {spec}")


@app.command("filter")
def filter_document(
    document: Path = typer.Argument(..., exists=True, dir_okay=False, help="Package metadata JSON"),
    config: str = typer.Option("security.yml", "--config"),
):
    """Filter a package metadata document and print the served result."""
    data = json.loads(document.read_text(encoding="utf-8"))
    security_filter = _load_filter(config)
    try:
        result = asyncio.run(security_filter.filter_metadata(data))
    finally:
        security_filter.close()
    typer.echo(json.dumps(result, indent=2))


def _split_spec(spec: str) -> tuple[str, str | None]:
    # the leading @ of a scope is not a version separator
    at = spec.rfind("@")
    if at <= 0:
        return spec, None
    return spec[:at], spec[at + 1:] or None


if __name__ == "__main__":
    app()
