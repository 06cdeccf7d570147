"""AsyncClick CLI for trivy-gate.

Provides user-facing commands:
- scan: Scan a project's lockfiles and gate on the configured policy
- config: Show the resolved configuration

Intended to run right after dependency installation (e.g. as a CI step
following `pip install` or `poetry lock`). Exit status 1 means the policy
blocked; configuration errors exit with 2. Scanner problems are reported as
warnings and do not block.
"""

import json
import os
from pathlib import Path

import asyncclick as click
import structlog

from trivygate.core.config import ConfigError, ConfigResolver, Configuration, EnvOverrides
from trivygate.core.logging import configure_logging
from trivygate.core.policy import decide
from trivygate.reporting.reporter import Reporter
from trivygate.tools.trivy import INSTALL_URL, ScanError, TrivyScanner

logger = structlog.get_logger()

EXIT_BLOCKED = 1
EXIT_CONFIG_ERROR = 2

LOCKFILE_NAMES = (
    "poetry.lock",
    "Pipfile.lock",
    "uv.lock",
    "pdm.lock",
    "requirements.txt",
    "Gemfile.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "go.sum",
    "Cargo.lock",
)


def find_lockfiles(project_root: Path) -> list[Path]:
    """Lockfiles trivy can scan in the project root."""
    return [project_root / name for name in LOCKFILE_NAMES if (project_root / name).is_file()]


def resolve_config(ctx: click.Context, project_root: Path) -> Configuration:
    try:
        return ConfigResolver(project_root).resolve()
    except ConfigError as e:
        click.echo(f"[-] {e}", err=True)
        ctx.exit(EXIT_CONFIG_ERROR)


@click.group()
@click.pass_context
async def cli(ctx):
    """trivy-gate - policy-driven Trivy scanning for dependency lockfiles"""
    ctx.ensure_object(dict)
    configure_logging(EnvOverrides.from_environ(os.environ).debug)


@cli.command()
@click.argument("project_root", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
async def scan(ctx, project_root: Path):
    """Scan PROJECT_ROOT and apply the fail-on policy.

    Examples:
        trivy-gate scan
        TRIVY_GATE_FAIL_ON_ANY=true trivy-gate scan path/to/project
    """
    project_root = project_root.resolve()
    config = resolve_config(ctx, project_root)

    if config.skip_scan:
        click.echo("[*] Trivy scan disabled, skipping")
        return

    if not find_lockfiles(project_root):
        click.echo(f"[!] No lockfile found in {project_root}, skipping scan", err=True)
        return

    scanner = TrivyScanner(project_root, config)
    if not scanner.is_available():
        click.echo("[!] Trivy not found, skipping scan", err=True)
        click.echo(f"[*] Install: {INSTALL_URL}", err=True)
        return

    try:
        result = await scanner.scan()
    except ScanError as e:
        click.echo(f"[!] Trivy scan failed: {e}", err=True)
        logger.debug("scan_failed", kind=e.kind.value, exc_info=True)
        return

    Reporter(result, config).display()

    verdict = decide(result, config)
    if verdict.should_block:
        click.echo(f"[-] {verdict.message}", err=True)
        ctx.exit(EXIT_BLOCKED)


@cli.command("config")
@click.argument("project_root", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
async def show_config(ctx, project_root: Path):
    """Print the resolved configuration for PROJECT_ROOT as JSON.

    Example:
        TRIVY_GATE_ENV=staging trivy-gate config
    """
    config = resolve_config(ctx, project_root.resolve())
    click.echo(json.dumps(config.model_dump(mode="json"), indent=2))
