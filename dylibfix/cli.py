"""dylibfix CLI — rewrite a plugin dylib's linking metadata in place."""

import sys

import click
from rich.console import Console
from rich.markup import escape

from dylibfix import __version__
from dylibfix.logging_conf import setup_logging

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

_STATUS_MARKS = {
    "planned": "[cyan]>[/]",
    "applied": "[green]v[/]",
    "unchanged": "[dim]-[/]",
    "unmatched": "[yellow]![/]",
    "failed": "[red]x[/]",
    "skipped": "[dim]~[/]",
}


@click.command()
@click.version_option(version=__version__)
@click.argument("path")
@click.option(
    "--rules",
    "rules_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="YAML rule set to use instead of the built-in Homebrew rules",
)
@click.option("--strict", is_flag=True, help="Fail when a dependency matches a rule's library but not its version")
@click.option("--dry-run", is_flag=True, help="Show the planned edits without changing the file")
@click.option("--codesign/--no-codesign", default=False, help="Re-sign ad hoc after editing")
@click.option("--verbose", "-v", is_flag=True, help="Log every toolchain command")
def main(path: str, rules_file: str | None, strict: bool, dry_run: bool, codesign: bool, verbose: bool):
    """Make PATH loadable from both Homebrew and a standalone app bundle.

    Sets the install name of PATH to its file name and changes known
    absolute Homebrew dependency paths to @rpath references.
    """
    from dylibfix import macho
    from dylibfix.errors import DylibFixError, MetadataError
    from dylibfix.rewriter import DependencyPathRewriter
    from dylibfix.rules import DEFAULT_RULES, load_rules

    setup_logging(verbose, console=err_console)

    try:
        rules = load_rules(rules_file) if rules_file else DEFAULT_RULES
        rewriter = DependencyPathRewriter(
            rules=rules, tool=macho.MachOTool(), strict=strict, codesign=codesign
        )

        console.print(f"\n[bold blue]dylibfix[/] — Fixing dylib paths for: {escape(path)}\n")

        if dry_run:
            report = rewriter.plan(path)
        else:
            report = rewriter.rewrite(path)
    except MetadataError as e:
        if e.report:
            _print_steps(e.report)
        err_console.print(f"[red]Error:[/] {escape(e.details())}")
        sys.exit(1)
    except DylibFixError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    _print_steps(report)
    for warning in report.warnings:
        console.print(f"  [yellow]![/] {escape(warning)}")
    if report.signed:
        console.print("  [green]v[/] Re-signed ad hoc")

    if dry_run:
        console.print(f"\n[cyan]Dry run:[/] {report.summary()}")
    else:
        console.print(f"\n[green]Done![/] {report.summary()}")


def _print_steps(report) -> None:
    for step in report.steps:
        mark = _STATUS_MARKS[step.status.value]
        console.print(f"  {mark} {escape(step.describe())}", highlight=False)
        if step.error:
            console.print(f"      [red]{escape(step.error)}[/]")


if __name__ == "__main__":
    main()
