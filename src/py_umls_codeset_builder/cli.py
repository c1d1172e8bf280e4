# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TimeElapsedColumn
from rich.table import Table

# We wrap the settings import in a try-except block to provide a nicer
# error message if the required environment variables are not set.
try:
    from .config import settings
except Exception as e:
    console = Console()
    console.print(Panel(
        f"[bold red]Configuration Error:[/bold red]\n{e}\n\nPlease ensure you have a .env file or have set the required environment variables, such as [bold cyan]PYUMLSCODESET_UMLS_API_KEY[/bold cyan].",
        title="[bold red]Initialization Failed[/bold red]",
        border_style="red"
    ))
    raise SystemExit(1)

from .concept_reconciler import ConceptReconciler
from .domain_classifier import (
    DISPLAY_DOMAIN_LABELS,
    deduplicate_and_sort_atoms,
    domain_for_semantic_types,
    group_atoms_by_display_domain,
    vocabulary_sort_key,
)
from .exceptions import CodeSetBuilderError, ConfigurationError, StandardVocabularyMissingError
from .expander import CodeSetBuilder
from .exporter import export_code_set
from .gateway import UMLSGateway
from .models import BuildProgress, Domain, HierarchyNode, SortMode


app = typer.Typer(
    name="py-umls-codeset-builder",
    help="Build comprehensive cross-vocabulary code sets from a single UMLS seed code."
)
console = Console()


def _error_panel(message: str, title: str = "Error"):
    console.print(Panel(f"[bold red]{escape(message)}", title=f"[bold red]{title}[/bold red]", border_style="red"))


def _create_gateway() -> UMLSGateway:
    try:
        return UMLSGateway.from_settings(settings)
    except ConfigurationError as e:
        _error_panel(str(e), title="Configuration Error")
        raise typer.Exit(code=1)


@app.command(name="search", help="Search UMLS concepts by free text.")
def search(
    term: str = typer.Argument(..., help="Text to search for, e.g. 'migraine'."),
    vocabularies: Optional[List[str]] = typer.Option(
        None, "--vocab", "-s", help="Restrict the search to a UMLS source. Repeatable."
    ),
    alphabetical: bool = typer.Option(False, "--alphabetical", help="Sort by name instead of relevance."),
):
    gateway = _create_gateway()
    sort_mode = SortMode.alphabetical if alphabetical else SortMode.relevance
    try:
        results = gateway.search_concepts(term, vocabularies, sort_mode)
    except (CodeSetBuilderError, ValueError) as e:
        _error_panel(f"Search failed: {e}")
        raise typer.Exit(code=1)

    if not results:
        console.print(f"[yellow]No concepts found for '{term}'.[/yellow]")
        return

    table = Table(title=f"{len(results)} concepts matching '{term}'")
    table.add_column("CUI", style="cyan")
    table.add_column("Name")
    table.add_column("Source")
    for result in results:
        table.add_row(result.concept_id, escape(result.name), result.root_source)
    console.print(table)


@app.command(name="concept", help="Show a concept's atoms, grouped by domain.")
def concept(
    concept_id: str = typer.Argument(..., help="UMLS CUI, e.g. C0149931."),
    vocabularies: Optional[List[str]] = typer.Option(
        None, "--vocab", "-s", help="Restrict atoms to a UMLS source. Repeatable."
    ),
    relations: bool = typer.Option(False, "--relations", help="Also list the concept's relations."),
):
    gateway = _create_gateway()
    try:
        details, atoms = gateway.get_concept_with_atoms(concept_id, vocabularies or settings.default_vocabularies)
        concept_relations = gateway.get_concept_relations(concept_id) if relations else []
    except CodeSetBuilderError as e:
        _error_panel(f"Could not load concept {concept_id}: {e}")
        raise typer.Exit(code=1)

    semantic_types = ", ".join(t.type_name for t in details.semantic_types) or "none"
    console.print(Panel(
        f"[bold]{escape(details.preferred_name)}[/bold]\nSemantic types: {semantic_types}\n"
        f"Suggested build domain: [cyan]{domain_for_semantic_types(details.semantic_types).value}[/cyan]",
        title=f"[bold cyan]{details.concept_id}[/bold cyan]",
        border_style="cyan"
    ))

    groups, primary = group_atoms_by_display_domain(deduplicate_and_sort_atoms(atoms), details.semantic_types)
    for display_domain, domain_atoms in groups:
        marker = " (primary)" if display_domain == primary else ""
        table = Table(title=f"{DISPLAY_DOMAIN_LABELS.get(display_domain, display_domain)}{marker}")
        table.add_column("Vocabulary", style="cyan")
        table.add_column("Code")
        table.add_column("TTY")
        table.add_column("Term")
        for atom in domain_atoms:
            table.add_row(atom.vocabulary, atom.source_code, atom.term_type or "", escape(atom.display_term))
        console.print(table)

    if concept_relations:
        table = Table(title="Relations")
        table.add_column("Label")
        table.add_column("Related")
        table.add_column("Name")
        for relation in concept_relations:
            table.add_row(relation.relation_label, relation.related_id, escape(relation.related_name))
        console.print(table)


@app.command(name="hierarchy", help="Show the ancestors and immediate descendants of a code.")
def hierarchy(
    vocabulary: str = typer.Argument(..., help="UMLS source abbreviation, e.g. SNOMEDCT_US."),
    code: str = typer.Argument(..., help="Code within the vocabulary."),
):
    gateway = _create_gateway()
    try:
        view = gateway.get_hierarchy(vocabulary, code)
    except CodeSetBuilderError as e:
        _error_panel(f"Could not load the hierarchy of {vocabulary}:{code}: {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold]Ancestors[/bold] ({len(view.ancestors)})")
    for depth, node in enumerate(view.ancestors):
        console.print(f"{'  ' * depth}{node.source_code}  {escape(node.display_term)}")
    console.print(f"{'  ' * len(view.ancestors)}[bold cyan]{view.anchor.label}[/bold cyan]")
    console.print(f"[bold]Descendants[/bold] ({len(view.descendants)})")
    for node in sorted(view.descendants, key=lambda n: (vocabulary_sort_key(n.vocabulary), n.source_code)):
        console.print(f"  {node.source_code}  {escape(node.display_term)}")


@app.command(name="estimate", help="Count the immediate descendants of a code before building.")
def estimate(
    vocabulary: str = typer.Argument(..., help="UMLS source abbreviation, e.g. SNOMEDCT_US."),
    code: str = typer.Argument(..., help="Code within the vocabulary."),
):
    builder = CodeSetBuilder(_create_gateway(), settings=settings)
    count = builder.estimate_immediate_descendant_count(vocabulary, code)
    console.print(f"{vocabulary}:{code} has [bold]{count}[/bold] immediate descendants.")
    if builder.requires_confirmation(count):
        console.print("[yellow]A build from this code will be large.[/yellow]")


def _confirm_size(builder: CodeSetBuilder, count: int) -> bool:
    if builder.is_danger_size(count):
        console.print(Panel(
            f"[bold red]This code has {count} immediate descendants. The full hierarchy may contain "
            "thousands of codes and the build can take a very long time.[/bold red]",
            title="[bold red]Very Large Hierarchy[/bold red]",
            border_style="red"
        ))
    else:
        console.print(Panel(
            f"[yellow]This code has {count} immediate descendants. The build may take several minutes.[/yellow]",
            title="[yellow]Large Hierarchy[/yellow]",
            border_style="yellow"
        ))
    return typer.confirm("Continue with the build?", default=False)


@app.command(name="build", help="Build and export a code set from a seed code.")
def build(
    vocabulary: str = typer.Argument(..., help="UMLS source abbreviation of the seed, e.g. SNOMEDCT_US."),
    code: str = typer.Argument(..., help="Seed code within the vocabulary."),
    domain: Optional[Domain] = typer.Option(
        None, "--domain", "-d", help="Clinical domain. Derived from the concept's semantic types when omitted."
    ),
    concept_id: Optional[str] = typer.Option(None, "--concept-id", "-c", help="UMLS CUI of the seed, if known."),
    text_filter: Optional[str] = typer.Option(None, "--filter", "-f", help="Only export codes matching this text."),
    export_vocabularies: Optional[List[str]] = typer.Option(
        None, "--vocab", "-s", help="Only export codes from this vocabulary. Repeatable."
    ),
    omop_ids: bool = typer.Option(False, "--omop-ids", help="Write OMOP vocabulary_id instead of the UMLS source."),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Directory for the exported file."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the size confirmation."),
):
    gateway = _create_gateway()
    builder = CodeSetBuilder(gateway, settings=settings)

    count = builder.estimate_immediate_descendant_count(vocabulary, code)
    if builder.requires_confirmation(count) and not yes:
        if not _confirm_size(builder, count):
            console.print("[yellow]Build aborted.[/yellow]")
            raise typer.Exit(code=0)

    try:
        if domain is None:
            if not concept_id:
                concept_id = ConceptReconciler(gateway).resolve_concept_id(vocabulary, code)
            if concept_id:
                domain = domain_for_semantic_types(gateway.get_concept(concept_id).semantic_types)
            else:
                console.print(f"[yellow]{vocabulary}:{code} has no UMLS concept; building a condition code set.[/yellow]")
                domain = Domain.condition
        console.print(Panel(
            f"[bold cyan]Building {domain.value} code set from {vocabulary}:{code}[/bold cyan]",
            border_style="cyan"
        ))

        with Progress(
            SpinnerColumn(),
            "[progress.description]{task.description}",
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting build...", total=None)

            def on_progress(update: BuildProgress):
                progress.update(
                    task,
                    description=update.phase,
                    completed=update.current,
                    total=update.total or None,
                )

            result = builder.build_code_set(
                HierarchyNode(vocabulary=vocabulary, source_code=code),
                domain,
                concept_id=concept_id,
                on_progress=on_progress,
            )
    except StandardVocabularyMissingError as e:
        _error_panel(str(e), title="Cannot Build Code Set")
        raise typer.Exit(code=1)
    except CodeSetBuilderError as e:
        console.print_exception()
        _error_panel(f"An error occurred during the build: {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"{result.total_count} codes from {result.source_concept_count} concepts")
    table.add_column("Vocabulary", style="cyan")
    table.add_column("Codes", justify="right")
    counts = result.counts_by_vocabulary()
    for vocab in sorted(counts, key=vocabulary_sort_key):
        table.add_row(vocab, str(counts[vocab]))
    console.print(table)

    path, exported = export_code_set(
        result,
        output_dir or settings.export_dir,
        text=text_filter,
        vocabularies=export_vocabularies,
        use_vocabulary_ids=omop_ids,
    )
    console.print(Panel(
        f"[bold green]Exported {exported} codes to {path}[/bold green]",
        title="[bold green]Code Set Ready[/bold green]"
    ))


if __name__ == "__main__":
    app()
