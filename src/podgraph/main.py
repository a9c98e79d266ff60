import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from .cli_config import (
    PodgraphConfig,
    apply_config_section,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .dependency import Identifier
from .dependency_resolver import DirectoryPodSpecSource, analyze_podfile_lock
from .error_handling import setup_error_handling
from .package import (
    ArtifactProvenance,
    RemoteArtifact,
    RepositoryProvenance,
    UnknownProvenance,
    VcsInfo,
    VcsType,
)
from .package_configuration import FilePackageConfigurationProvider
from .package_curations import FilePackageCurationProvider
from .reporting import AnalyzerReporter, output_json_results
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()


def _parse_coordinates(coordinates: str) -> Identifier:
    try:
        return Identifier.from_coordinates(coordinates)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="COORDINATES")


def _find_lockfile(path: str) -> str:
    """Return ``path`` itself, or the first known lock file inside a directory."""
    candidate = Path(path)
    if not candidate.is_dir():
        return path

    for name in get_config().analyzer.lockfile_names:
        lockfile = candidate / name
        if lockfile.is_file():
            return str(lockfile)

    raise click.ClickException(f"No lock file found in {path}")


def _initialize_logging() -> None:
    config = get_config()
    level = getattr(logging, config.logging.log_level.upper(), logging.WARNING)
    setup_error_handling(log_level=level, mask_sensitive_data=config.logging.enable_sensitive_data_masking)
    configure_logging(config.logging.log_level, config.logging.enable_json)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    podgraph: CocoaPods dependency graph resolver

    Reconstructs the dependency graph recorded in a Podfile.lock and applies
    package curations and package configurations to the result.
    """
    if version:
        console.print(f"podgraph version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
    else:
        _initialize_logging()


@cli.command()
@click.argument("lockfile", type=click.Path(exists=True, readable=True))
@click.option(
    "--specs-dir",
    type=click.Path(exists=True, file_okay=False),
    help="Directory holding podspec JSON files",
)
@click.option(
    "--curations",
    "curation_paths",
    multiple=True,
    type=click.Path(exists=True),
    help="Curation file or directory (repeatable)",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
    show_default=True,
)
@click.option("--output-file", type=click.Path(), help="Write JSON results to this file")
@click.option("--fail-on-issues", is_flag=True, help="Exit with code 1 if any error issue was found")
def resolve(
    lockfile: str,
    specs_dir: Optional[str],
    curation_paths: Tuple[str, ...],
    output_format: str,
    output_file: Optional[str],
    fail_on_issues: bool,
):
    """Resolve the dependency graph of a Podfile.lock."""
    config = get_config()
    specs_dir = specs_dir or config.analyzer.specs_dir
    paths = list(curation_paths) or config.curations.curation_paths

    source = DirectoryPodSpecSource(specs_dir) if specs_dir else None
    try:
        result = analyze_podfile_lock(_find_lockfile(lockfile), source=source)
    except ValueError as e:
        raise click.ClickException(f"Failed to analyze lock file: {e}")

    curated = None
    if paths:
        provider = FilePackageCurationProvider(paths)
        curated = [provider.curate(package) for package in result.sorted_packages]

    if output_format == "json" or output_file:
        output_json_results(result, curated, output_file)
    else:
        AnalyzerReporter(console).print_result(result, curated)

    if fail_on_issues and result.has_errors:
        sys.exit(1)


@cli.command()
@click.argument("coordinates")
@click.option(
    "--curations",
    "curation_paths",
    multiple=True,
    type=click.Path(exists=True),
    help="Curation file or directory (repeatable)",
)
def curations(coordinates: str, curation_paths: Tuple[str, ...]):
    """List the curations that apply to TYPE:NAMESPACE:NAME:VERSION."""
    pkg_id = _parse_coordinates(coordinates)
    paths = list(curation_paths) or get_config().curations.curation_paths
    if not paths:
        raise click.UsageError("No curation files given, use --curations")

    provider = FilePackageCurationProvider(paths)
    AnalyzerReporter(console).print_curations(coordinates, provider.get_curations_for(pkg_id))


@cli.command("match-config")
@click.argument("coordinates")
@click.option(
    "--configurations",
    "configuration_paths",
    multiple=True,
    type=click.Path(exists=True),
    help="Package configuration file or directory (repeatable)",
)
@click.option("--source-artifact", help="URL of the fetched source artifact")
@click.option("--vcs-type", help="VCS type of the checkout, e.g. Git or GitRepo")
@click.option("--vcs-url", help="VCS URL of the checkout")
@click.option("--vcs-revision", help="Resolved revision of the checkout")
@click.option("--vcs-path", default="", help="Path inside the checkout")
def match_config(
    coordinates: str,
    configuration_paths: Tuple[str, ...],
    source_artifact: Optional[str],
    vcs_type: Optional[str],
    vcs_url: Optional[str],
    vcs_revision: Optional[str],
    vcs_path: str,
):
    """List the package configurations matching a package and its provenance."""
    pkg_id = _parse_coordinates(coordinates)
    paths = list(configuration_paths) or get_config().curations.package_configuration_paths
    if not paths:
        raise click.UsageError("No package configuration files given, use --configurations")

    if source_artifact and vcs_url:
        raise click.UsageError("Use either --source-artifact or the --vcs-* options, not both")

    if source_artifact:
        provenance = ArtifactProvenance(RemoteArtifact(url=source_artifact))
    elif vcs_url:
        if not vcs_revision:
            raise click.UsageError("--vcs-revision is required together with --vcs-url")
        provenance = RepositoryProvenance(
            VcsInfo(type=VcsType.from_string(vcs_type), url=vcs_url, revision=vcs_revision, path=vcs_path),
            resolved_revision=vcs_revision,
        )
    else:
        provenance = UnknownProvenance()

    provider = FilePackageConfigurationProvider(paths)
    matching = provider.get_package_configurations(pkg_id, provenance)
    AnalyzerReporter(console).print_package_configurations(coordinates, matching)


@cli.command()
def info():
    """Show information about inputs, configuration and usage examples."""
    info_text = """
[bold blue]📋 Inputs:[/bold blue]

• [green]Podfile.lock[/green] - PODS and DEPENDENCIES tables
• [green]<name>.podspec.json[/green] - Podspec metadata, read from --specs-dir
• [green]*.yml / *.json[/green] - Package curations and package configurations

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]PODGRAPH_SPECS_DIR[/cyan] - Default podspec directory
• [cyan]PODGRAPH_CURATION_PATHS[/cyan] - Curation files, separated by the path separator
• [cyan]PODGRAPH_PACKAGE_CONFIGURATION_PATHS[/cyan] - Package configuration files
• [cyan]PODGRAPH_MAX_DEPENDENCY_DEPTH[/cyan] - Bound on dependency nesting
• [cyan]PODGRAPH_LOG_LEVEL[/cyan] - Log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].podgraph.yaml[/green] - Project-level config (also .yml, .json, .toml)
• [green]~/.config/podgraph/config.yaml[/green] - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Resolve a lock file
  podgraph resolve ios/Podfile.lock --specs-dir specs

  # Apply curations and write JSON
  podgraph resolve ios/Podfile.lock --curations curations.yml --output-file result.json

  # Which curations apply to a package?
  podgraph curations "Pod::AFNetworking:3.1.0" --curations curations.yml

  # Which package configuration applies to a checkout?
  podgraph match-config "Pod::AFNetworking:3.1.0" --configurations configs \\
      --vcs-type Git --vcs-url https://github.com/AFNetworking/AFNetworking.git --vcs-revision 3.1.0
"""
    console.print(
        Panel(
            info_text,
            title="[bold]podgraph Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".podgraph.yaml",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    console.print("\n[bold cyan]📦 Analyzer Settings:[/bold cyan]")
    console.print(f"  Package Type: {current_config.analyzer.package_type}")
    console.print(f"  Lock File Names: {', '.join(current_config.analyzer.lockfile_names)}")
    console.print(f"  Max Dependency Depth: {current_config.analyzer.max_dependency_depth}")
    console.print(f"  Specs Directory: {current_config.analyzer.specs_dir or '-'}")

    console.print("\n[bold cyan]🩹 Curation Settings:[/bold cyan]")
    console.print(f"  Curation Paths: {', '.join(current_config.curations.curation_paths) or '-'}")
    console.print(
        f"  Package Configuration Paths: {', '.join(current_config.curations.package_configuration_paths) or '-'}"
    )

    console.print("\n[bold cyan]🔒 Security Settings:[/bold cyan]")
    console.print(f"  Max File Size: {current_config.security.max_file_size_mb} MB")
    console.print(f"  Allowed Extensions: {', '.join(current_config.security.allowed_file_extensions)}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")
    console.print(f"  JSON Logging: {current_config.logging.enable_json}")
    console.print(f"  Sensitive Data Masking: {current_config.logging.enable_sensitive_data_masking}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if not isinstance(config_data, dict):
        console.print(f"❌ Could not load config from {config_file}", style="red")
        sys.exit(1)

    candidate = PodgraphConfig()
    for section_name in ["analyzer", "curations", "security", "logging"]:
        if section_name in config_data:
            apply_config_section(getattr(candidate, section_name), config_data[section_name], section_name)

    errors: List[str] = validate_config_values(candidate)
    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
