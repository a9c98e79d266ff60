"""
Reporting and output formatting for analyzer results.

Provides console output using the Rich library and JSON export.
"""

import json
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .dependency import PackageReference
from .dependency_resolver import ProjectAnalyzerResult
from .error_handling import Issue, Severity
from .package_configuration import PackageConfiguration
from .package_curations import CuratedPackage, PackageCuration

_SEVERITY_STYLES = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "yellow",
    Severity.HINT: "blue",
}


class AnalyzerReporter:
    """Formats and displays analyzer results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_result(
        self, result: ProjectAnalyzerResult, curated: Optional[List[CuratedPackage]] = None
    ) -> None:
        """
        Print the dependency graph, the packages and the issues of a project.

        Args:
            result: The analyzer result to display
            curated: Curated packages; the plain packages are shown when omitted
        """
        self.console.print()
        self._print_header(result)
        self._print_dependency_tree(result)

        if curated is None:
            curated = [CuratedPackage(package=package) for package in result.sorted_packages]
        if curated:
            self._print_packages(curated)
        else:
            self.console.print("No packages found.", style="yellow")

        if result.issues:
            self._print_issues(result.issues)

        self._print_footer(result)

    def _print_header(self, result: ProjectAnalyzerResult) -> None:
        self.console.print(
            Panel(
                f"Definition file: {result.definition_file}\nProject: {result.project_id.display_name}",
                title="[bold blue]podgraph[/bold blue]",
                border_style="blue",
            )
        )

    def _print_dependency_tree(self, result: ProjectAnalyzerResult) -> None:
        tree = Tree("[bold]Dependencies[/bold]")
        for reference in sorted(result.dependencies):
            self._add_tree_node(tree, reference, set())
        self.console.print(tree)
        self.console.print()

    def _add_tree_node(self, parent: Tree, reference: PackageReference, ancestors: set) -> None:
        label = f"[green]{reference.id.display_name}[/green] [dim]{reference.id.version}[/dim]"
        branch = parent.add(label)
        if reference.id in ancestors:
            return
        for child in reference.sorted_dependencies():
            self._add_tree_node(branch, child, ancestors | {reference.id})

    def _print_packages(self, curated: List[CuratedPackage]) -> None:
        table = Table(title="Packages", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Declared Licenses")
        table.add_column("Concluded License")
        table.add_column("VCS")
        table.add_column("Curations", justify="center")

        for item in curated:
            package = item.package
            table.add_row(
                package.id.display_name,
                package.id.version,
                ", ".join(sorted(package.declared_licenses)) or "-",
                package.concluded_license or "-",
                package.vcs.url or "-",
                str(len(item.curations)) if item.curations else "",
            )

        self.console.print(table)
        self.console.print()

    def _print_issues(self, issues: List[Issue]) -> None:
        table = Table(title="Issues", box=box.ROUNDED, title_style="bold red")
        table.add_column("Severity", style="bold")
        table.add_column("Source")
        table.add_column("Message")

        for issue in issues:
            style = _SEVERITY_STYLES[issue.severity]
            table.add_row(f"[{style}]{issue.severity.value}[/{style}]", issue.source, issue.message)

        self.console.print(table)
        self.console.print()

    def _print_footer(self, result: ProjectAnalyzerResult) -> None:
        errors = len([i for i in result.issues if i.severity == Severity.ERROR])
        summary = f"{len(result.packages)} packages, {len(result.dependencies)} direct dependencies"
        if errors:
            self.console.print(f"❌ {summary}, {errors} errors", style="red")
        else:
            self.console.print(f"✅ {summary}", style="green")

    def print_curations(self, coordinates: str, curations: List[PackageCuration]) -> None:
        if not curations:
            self.console.print(f"No curations apply to {coordinates}", style="yellow")
            return

        table = Table(title=f"Curations for {coordinates}", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Curation Id", style="bold")
        table.add_column("Predicate")
        table.add_column("Comment")

        for index, curation in enumerate(curations, 1):
            table.add_row(
                str(index),
                curation.id.to_coordinates(),
                curation.predicate.kind.value,
                curation.data.comment or "",
            )
        self.console.print(table)

    def print_package_configurations(self, coordinates: str, configurations: List[PackageConfiguration]) -> None:
        if not configurations:
            self.console.print(f"No package configuration matches {coordinates}", style="yellow")
            return

        table = Table(title=f"Package configurations for {coordinates}", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Scope", style="bold")
        table.add_column("Path Excludes", justify="center")
        table.add_column("License Finding Curations", justify="center")

        for configuration in configurations:
            if configuration.source_artifact_url is not None:
                scope = configuration.source_artifact_url
            else:
                scope = configuration.to_dict()["vcs"]["url"]
            table.add_row(
                scope,
                str(len(configuration.path_excludes)),
                str(len(configuration.license_finding_curations)),
            )
        self.console.print(table)


def build_json_results(
    result: ProjectAnalyzerResult, curated: Optional[List[CuratedPackage]] = None
) -> Dict[str, Any]:
    """Build the JSON document of an analyzer result."""
    results = result.to_dict()
    if curated is not None:
        results["packages"] = [item.to_dict() for item in curated]
    results["summary"] = {
        "packages": len(result.packages),
        "direct_dependencies": len(result.dependencies),
        "errors": len([i for i in result.issues if i.severity == Severity.ERROR]),
        "warnings": len([i for i in result.issues if i.severity == Severity.WARNING]),
    }
    return results


def output_json_results(
    result: ProjectAnalyzerResult,
    curated: Optional[List[CuratedPackage]] = None,
    output_file: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    """Export results as JSON to ``output_file`` or standard output."""
    json_output = json.dumps(build_json_results(result, curated), indent=2, ensure_ascii=False)

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
        (console or Console(stderr=True)).print(f"✅ Results saved to {output_file}", style="green")
    else:
        print(json_output)
