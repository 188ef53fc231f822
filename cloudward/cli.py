"""CloudWard CLI entry point.

Provides the `cloudward` command with subcommands:
  - analyze: Evaluate a resource inventory against one or more frameworks
  - frameworks: List the frameworks in the registry
  - seed: Seed the registry with the built-in framework catalog
"""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, Optional

import typer
import yaml
from rich.console import Console

from cloudward import __version__

if TYPE_CHECKING:
    from cloudward.config.schema import EngineSettings
    from cloudward.frameworks.registry import FrameworkRegistry

app = typer.Typer(
    name="cloudward",
    help="Multi-framework policy evaluation for cloud resource inventories.",
    no_args_is_help=True,
)

_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"cloudward {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """CloudWard: evaluate cloud resources against best-practice frameworks."""


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _load_settings_or_exit(config: Path | None) -> EngineSettings:
    from cloudward.config.loader import SettingsValidationError, load_settings
    from cloudward.config.schema import EngineSettings

    if config is None:
        return EngineSettings()
    try:
        return load_settings(config)
    except FileNotFoundError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    except SettingsValidationError as e:
        _console.print(f"[bold red]Settings error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None


def load_resources(path: Path) -> list[Any]:
    """Read a resource inventory from JSON or YAML.

    Accepts a list of resources, a mapping with a ``resources`` list, or a
    CloudFormation-style template whose ``Resources`` mapping is flattened
    into a list (the logical id becomes ``LogicalResourceId``).

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file cannot be parsed or has no resource list.
    """
    if not path.exists():
        raise FileNotFoundError(f"Resource file not found at {path}.")

    raw_text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(raw_text)
        else:
            data = json.loads(raw_text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse resources in {path}: {e}") from e

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("resources"), list):
            return data["resources"]
        if isinstance(data.get("Resources"), dict):
            return [
                {"LogicalResourceId": logical_id, **body}
                for logical_id, body in data["Resources"].items()
                if isinstance(body, dict)
            ]
    raise ValueError(
        f"{path} must contain a list of resources, a mapping with a 'resources' "
        f"list, or a template with a 'Resources' mapping."
    )


async def enable_catalog_for_tenant(registry: FrameworkRegistry, tenant_id: str) -> list[str]:
    """Seed the catalog and enable every built-in rule for ``tenant_id``.

    Used with the in-memory registry, which starts empty on every run.

    Returns:
        The ids of the enabled frameworks.
    """
    from cloudward.frameworks.catalog import catalog_frameworks
    from cloudward.frameworks.schema import TenantFrameworkConfig

    await registry.initialize_default_frameworks()
    framework_ids = catalog_frameworks()
    for framework_id in framework_ids:
        rules = await registry.get_all_framework_rules(framework_id)
        await registry.save_tenant_framework_config(TenantFrameworkConfig(
            tenant_id=tenant_id,
            framework_id=framework_id,
            name=f"{framework_id} (all rules)",
            is_default=True,
            enabled_rules=[rule.rule_id for rule in rules],
        ))
    return framework_ids


# ---------------------------------------------------------------------------
# analyze command
# ---------------------------------------------------------------------------


@app.command()
def analyze(
    resources: Annotated[
        Path,
        typer.Argument(help="JSON or YAML file with the resource inventory to analyze."),
    ],
    framework: Annotated[
        Optional[list[str]],
        typer.Option(
            "--framework",
            "-f",
            help="Framework id to evaluate (repeatable). Defaults to the tenant's default frameworks.",
        ),
    ] = None,
    tenant: Annotated[
        str,
        typer.Option("--tenant", "-t", help="Tenant whose framework configuration applies."),
    ] = "local",
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project the resources belong to."),
    ] = "default",
    analysis_id: Annotated[
        Optional[str],
        typer.Option("--analysis-id", help="Analysis id. Generated when omitted."),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to cloudward.yaml settings file."),
    ] = None,
    log: Annotated[
        Optional[Path],
        typer.Option(
            "--log",
            "-l",
            help="Path to write structured JSON Lines audit log. Without this, logs only to stderr.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log every rule result, not only errors."),
    ] = False,
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Output the analysis result as JSON instead of rich tables."),
    ] = False,
) -> None:
    """Evaluate a resource inventory against one or more frameworks.

    With the in-memory registry (the default), the built-in catalog is seeded
    and every rule is enabled for the tenant before the analysis runs.

    Examples:
      cloudward analyze template.json
      cloudward analyze inventory.yaml -f cloud-security-posture
      cloudward analyze inventory.json --config cloudward.yaml --json > result.json
    """
    from cloudward.audit.logger import AnalysisAuditLogger
    from cloudward.config.schema import InferenceProvider, RegistryBackend
    from cloudward.engine.factory import build_engine
    from cloudward.errors import RegistryUnavailableError
    from cloudward.frameworks.findings import AnalysisStatus
    from cloudward.report import render_analysis_json, render_analysis_report

    settings = _load_settings_or_exit(config)

    try:
        inventory = load_resources(resources)
    except (FileNotFoundError, ValueError) as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    api_key = None
    if settings.inference.provider == InferenceProvider.ANTHROPIC:
        api_key = os.environ.get(settings.inference.api_key_env)

    audit = AnalysisAuditLogger(
        log_path=log or settings.audit.log_path,
        verbose=verbose or settings.audit.verbose,
    )
    try:
        engine = build_engine(settings, audit=audit, api_key=api_key)
    except ValueError as e:
        audit.close()
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    async def _run() -> Any:
        try:
            if settings.registry.backend == RegistryBackend.MEMORY:
                await enable_catalog_for_tenant(engine.registry, tenant)
            framework_ids = framework
            if not framework_ids:
                defaults = await engine.registry.get_default_frameworks_for_tenant(tenant)
                framework_ids = [f.id for f in defaults]
            return await engine.execute_multi_framework_analysis(
                tenant,
                project,
                analysis_id or str(uuid.uuid4()),
                framework_ids,
                inventory,
            )
        finally:
            await engine.close()

    try:
        result = asyncio.run(_run())
    except RegistryUnavailableError as e:
        _console.print(f"[bold red]Registry error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    finally:
        audit.close()

    if not result.frameworks:
        _console.print(
            "[bold yellow]No frameworks to evaluate.[/bold yellow] "
            "Pass --framework or mark a tenant configuration as default.",
            highlight=False,
        )

    if output_json:
        Console().print_json(json.dumps(render_analysis_json(result), indent=2))
    else:
        render_analysis_report(result, _console)

    if result.status == AnalysisStatus.FAILED:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# frameworks command
# ---------------------------------------------------------------------------


@app.command()
def frameworks(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to cloudward.yaml settings file."),
    ] = None,
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Output the framework list as JSON."),
    ] = False,
) -> None:
    """List the active frameworks in the registry.

    With the in-memory registry this shows the built-in catalog.
    """
    from rich.table import Table

    from cloudward.config.schema import RegistryBackend
    from cloudward.engine.factory import build_store
    from cloudward.errors import RegistryUnavailableError
    from cloudward.frameworks.registry import FrameworkRegistry
    from cloudward.frameworks.schema import Framework

    settings = _load_settings_or_exit(config)
    registry = FrameworkRegistry(build_store(settings.registry))

    async def _list() -> list[tuple[Framework, int]]:
        if settings.registry.backend == RegistryBackend.MEMORY:
            await registry.initialize_default_frameworks()
        listed: list[tuple[Framework, int]] = []
        token: str | None = None
        while True:
            page = await registry.list_frameworks(next_token=token)
            for fw in page.frameworks:
                listed.append((fw, len(await registry.get_all_framework_rules(fw.id))))
            if page.next_token is None:
                return listed
            token = page.next_token

    try:
        listed = asyncio.run(_list())
    except RegistryUnavailableError as e:
        _console.print(f"[bold red]Registry error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    if output_json:
        data = [
            {**fw.model_dump(mode="json"), "rule_count": count} for fw, count in listed
        ]
        Console().print_json(json.dumps(data, indent=2))
        return

    table = Table(
        title="Frameworks",
        show_header=True,
        header_style="bold dim",
        border_style="#333333",
        title_style="#5eead4 bold",
        expand=True,
    )
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Name", ratio=3)
    table.add_column("Type", ratio=1)
    table.add_column("Version", justify="center")
    table.add_column("Rules", justify="center")
    for fw, count in listed:
        table.add_row(fw.id, fw.name, fw.type.value, fw.version, str(count))
    _console.print(table)


# ---------------------------------------------------------------------------
# seed command
# ---------------------------------------------------------------------------


@app.command()
def seed(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to cloudward.yaml settings file."),
    ] = None,
) -> None:
    """Seed the registry with the built-in framework catalog.

    Safe to run repeatedly: existing entries are replaced, not duplicated.
    """
    from cloudward.audit.logger import AnalysisAuditLogger
    from cloudward.config.schema import RegistryBackend
    from cloudward.engine.factory import build_store
    from cloudward.errors import RegistryUnavailableError
    from cloudward.frameworks.registry import FrameworkRegistry

    settings = _load_settings_or_exit(config)
    if settings.registry.backend == RegistryBackend.MEMORY:
        _console.print(
            "[bold yellow]Note:[/bold yellow] the in-memory registry does not persist; "
            "configure registry.backend: dynamodb to seed a shared table.",
            highlight=False,
        )

    audit = AnalysisAuditLogger(log_path=settings.audit.log_path)
    registry = FrameworkRegistry(build_store(settings.registry), audit)
    try:
        count = asyncio.run(registry.initialize_default_frameworks())
    except RegistryUnavailableError as e:
        _console.print(f"[bold red]Registry error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    finally:
        audit.close()

    _console.print(f"[bold #00ff88]Seeded {count} framework(s).[/bold #00ff88]")
