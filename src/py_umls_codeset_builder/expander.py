# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Builds a cross-vocabulary code set from a single seed code.

The build runs in stages:
  1. Re-anchor the seed to the domain's standard vocabulary.
  2. Walk the seed's descendant hierarchy.
  3. Map every walked code to its UMLS concept.
  4. Collect each concept's codes in the target vocabularies.
  5. Walk the hierarchies of those target codes as well.
  6. Map RxNorm drugs to NDC products when NDC is a target.
  7. Drop duplicate (vocabulary, code) rows; earlier stages win.
"""
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set, Tuple

from rich.console import Console

from .cancellation import CancellationToken, check_cancelled
from .concept_reconciler import ConceptReconciler
from .domain_classifier import (
    HIERARCHICAL_VOCABULARIES,
    standard_vocabulary_for,
    target_vocabularies_for,
)
from .dose_forms import parse_dose_form_and_strength
from .exceptions import GatewayError, StandardVocabularyMissingError
from .gateway import UMLSGateway
from .hierarchy_walker import HierarchyWalker
from .models import Atom, BuildProgress, BuildResult, CodeRecord, Domain, HierarchyNode

if TYPE_CHECKING:
    from .config import Settings

console = Console()

ProgressCallback = Callable[[BuildProgress], None]

DEFAULT_BROWSE_URL_TEMPLATE = "https://uts.nlm.nih.gov/uts/umls/concept/{concept_id}"
DEFAULT_SIZE_WARNING_THRESHOLD = 100
DEFAULT_SIZE_DANGER_THRESHOLD = 500


class CodeSetBuilder:
    """
    Orchestrates a build on top of the gateway, the walker and the reconciler.
    A builder holds no per-build state and can run any number of builds.
    """

    def __init__(
        self,
        gateway: UMLSGateway,
        walker: Optional[HierarchyWalker] = None,
        reconciler: Optional[ConceptReconciler] = None,
        settings: Optional["Settings"] = None,
    ):
        self.gateway = gateway
        self.walker = walker or HierarchyWalker(gateway)
        self.reconciler = reconciler or ConceptReconciler(gateway)
        if settings is not None:
            self.browse_url_template = settings.browse_url_template
            self.size_warning_threshold = settings.size_warning_threshold
            self.size_danger_threshold = settings.size_danger_threshold
        else:
            self.browse_url_template = DEFAULT_BROWSE_URL_TEMPLATE
            self.size_warning_threshold = DEFAULT_SIZE_WARNING_THRESHOLD
            self.size_danger_threshold = DEFAULT_SIZE_DANGER_THRESHOLD

    # --- Pre-flight ---

    def estimate_immediate_descendant_count(self, vocabulary: str, code: str) -> int:
        """A cheap size hint: the number of immediate descendants only."""
        try:
            return len(self.gateway.get_descendants(vocabulary, code))
        except GatewayError as e:
            console.log(f"[yellow]Could not estimate the size of {vocabulary}:{code}: {e}[/yellow]")
            return 0

    def requires_confirmation(self, count: int) -> bool:
        return count > self.size_warning_threshold

    def is_danger_size(self, count: int) -> bool:
        return count > self.size_danger_threshold

    # --- Build ---

    def _code_url(self, concept_id: str) -> str:
        return self.browse_url_template.format(concept_id=concept_id)

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], phase: str, current: int = 0, total: int = 0):
        if on_progress:
            on_progress(BuildProgress(phase=phase, current=current, total=total))

    def _drug_attributes(self, vocabulary: str, term: str) -> Dict[str, Optional[str]]:
        if vocabulary != "RXNORM":
            return {}
        parsed = parse_dose_form_and_strength(term)
        return {"dose_form": parsed.dose_form, "strength": parsed.strength}

    def _normalize_root(
        self,
        root_node: HierarchyNode,
        standard_vocabulary: str,
        concept_id: Optional[str],
        on_progress: Optional[ProgressCallback],
    ) -> Tuple[HierarchyNode, Optional[str]]:
        if root_node.vocabulary == standard_vocabulary:
            if concept_id is None:
                try:
                    concept_id = self.reconciler.resolve_concept_id(root_node.vocabulary, root_node.source_code)
                except GatewayError as e:
                    console.log(f"[yellow]Could not resolve a concept for {root_node.label}: {e}[/yellow]")
            return root_node, concept_id

        self._report(on_progress, f"Finding {standard_vocabulary} code for comprehensive coverage...")
        try:
            if concept_id is None:
                concept_id = self.reconciler.resolve_concept_id(root_node.vocabulary, root_node.source_code)
            if concept_id is None:
                raise StandardVocabularyMissingError(standard_vocabulary, reason=f"{root_node.label} has no concept")
            _, atoms = self.gateway.get_concept_with_atoms(concept_id, [standard_vocabulary])
        except GatewayError as e:
            raise StandardVocabularyMissingError(standard_vocabulary, concept_id, reason=str(e)) from e

        if not atoms:
            raise StandardVocabularyMissingError(standard_vocabulary, concept_id)

        standard_atom: Atom = atoms[0]
        console.log(
            f"Building from {standard_vocabulary} code [bold cyan]{standard_atom.source_code}[/bold cyan] "
            f"instead of {root_node.label}"
        )
        anchored = HierarchyNode(
            vocabulary=standard_atom.vocabulary or standard_vocabulary,
            source_code=standard_atom.source_code,
            display_term=standard_atom.display_term,
            node_id=standard_atom.atom_id,
            term_type=standard_atom.term_type,
        )
        return anchored, concept_id

    def _fetch_target_codes(
        self,
        concepts: Dict[str, HierarchyNode],
        target_vocabularies: List[str],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> List[CodeRecord]:
        records: List[CodeRecord] = []
        total = len(concepts)
        for i, (concept_id, source_node) in enumerate(concepts.items(), start=1):
            check_cancelled(cancel_token)
            try:
                concept, atoms = self.gateway.get_concept_with_atoms(concept_id, target_vocabularies)
            except GatewayError as e:
                console.log(f"[yellow]Skipping concept {concept_id}: {e}[/yellow]")
                continue
            for atom in atoms:
                records.append(CodeRecord(
                    concept_id=concept_id,
                    concept_name=concept.preferred_name,
                    vocabulary=atom.vocabulary,
                    code=atom.source_code,
                    term=atom.display_term,
                    code_url=self._code_url(concept_id),
                    origin="direct",
                    source_code=source_node.label,
                    **self._drug_attributes(atom.vocabulary, atom.display_term),
                ))
            self._report(on_progress, f"Processing {i}/{total} concepts...", i, total)
        return records

    def _expand_target_hierarchies(
        self,
        direct_records: List[CodeRecord],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> List[CodeRecord]:
        expanded: List[CodeRecord] = []
        processed: Set[Tuple[str, str]] = set()
        total = len(direct_records)

        for i, record in enumerate(direct_records, start=1):
            check_cancelled(cancel_token)
            if record.key in processed:
                continue
            processed.add(record.key)
            self._report(on_progress, f"Expanding {i}/{total} codes...", i, total)
            if record.vocabulary not in HIERARCHICAL_VOCABULARIES:
                continue

            descendants = self.walker.walk_descendants(record.vocabulary, record.code, cancel_token=cancel_token)
            for node in descendants:
                check_cancelled(cancel_token)
                if node.key in processed:
                    continue
                processed.add(node.key)
                try:
                    concept_id = self.reconciler.resolve_concept_id(node.vocabulary, node.source_code)
                    if concept_id is None:
                        continue
                    concept = self.gateway.get_concept(concept_id)
                except GatewayError as e:
                    console.log(f"[yellow]Skipping {node.label}: {e}[/yellow]")
                    continue
                expanded.append(CodeRecord(
                    concept_id=concept_id,
                    concept_name=concept.preferred_name,
                    vocabulary=node.vocabulary,
                    code=node.source_code,
                    term=node.display_term,
                    code_url=self._code_url(concept_id),
                    origin="hierarchy",
                    source_code=f"{record.vocabulary}:{record.code}",
                    **self._drug_attributes(node.vocabulary, node.display_term),
                ))

        console.log(f"Hierarchical expansion added {len(expanded)} codes")
        return expanded

    def _map_products(
        self,
        records: List[CodeRecord],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> List[CodeRecord]:
        drugs: Dict[str, CodeRecord] = {}
        for record in records:
            if record.vocabulary == "RXNORM" and record.code not in drugs:
                drugs[record.code] = record

        self._report(on_progress, "Fetching NDC codes for RxNorm concepts...", 0, len(drugs))
        products: List[CodeRecord] = []
        for i, drug in enumerate(drugs.values(), start=1):
            check_cancelled(cancel_token)
            try:
                product_codes = self.gateway.map_drug_to_product(drug.code, drug.concept_id)
            except GatewayError as e:
                console.log(f"[yellow]Could not map RXNORM:{drug.code} to NDC: {e}[/yellow]")
                continue
            for product in product_codes:
                products.append(CodeRecord(
                    concept_id=drug.concept_id,
                    concept_name=drug.concept_name,
                    vocabulary="NDC",
                    code=product.code,
                    term=f"{drug.term} [{product.code}]",
                    origin="product",
                    source_code=f"RXNORM:{drug.code}",
                    dose_form=drug.dose_form,
                    strength=drug.strength,
                    source_rx_concept_id=drug.code,
                    product_origin=product.origin,
                ))
            self._report(on_progress, f"Mapping RxNorm to NDC: {i}/{len(drugs)}...", i, len(drugs))

        console.log(f"Mapped {len(drugs)} RxNorm codes to {len(products)} NDC codes")
        return products

    @staticmethod
    def _deduplicate(records: List[CodeRecord]) -> List[CodeRecord]:
        unique: Dict[Tuple[str, str], CodeRecord] = {}
        for record in records:
            if record.key not in unique:
                unique[record.key] = record
        return list(unique.values())

    def build_code_set(
        self,
        root_node: HierarchyNode,
        domain: Domain,
        concept_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BuildResult:
        """
        Runs a full build for `root_node` in `domain`.

        Raises StandardVocabularyMissingError when the seed cannot be
        re-anchored to the domain's standard vocabulary, and
        BuildCancelledError when `cancel_token` fires. Failures on single
        codes or concepts are logged and skipped.
        """
        standard_vocabulary = standard_vocabulary_for(domain)
        target_vocabularies = target_vocabularies_for(domain)
        console.log(
            f"Building [bold]{domain.value}[/bold] code set from {root_node.label}; "
            f"targets: {', '.join(target_vocabularies)}"
        )

        check_cancelled(cancel_token)
        root, root_concept_id = self._normalize_root(root_node, standard_vocabulary, concept_id, on_progress)

        # Source hierarchy
        self._report(on_progress, "Fetching descendants from hierarchy...")
        descendants = self.walker.walk_descendants(
            root.vocabulary,
            root.source_code,
            on_progress=lambda current, phase: self._report(on_progress, phase, current),
            cancel_token=cancel_token,
        )
        source_codes = [root] + descendants
        console.log(f"Found {len(source_codes)} source codes in hierarchy (including root)")

        # Concepts
        total = len(source_codes)
        self._report(on_progress, "Converting to CUIs...", 0, total)
        concepts = self.reconciler.reconcile(
            source_codes,
            on_progress=lambda current, phase: self._report(on_progress, phase, current, total),
            cancel_token=cancel_token,
        )
        console.log(f"Converted to {len(concepts)} unique CUIs")

        # Target vocabularies
        self._report(on_progress, "Fetching codes from target vocabularies...", 0, len(concepts))
        direct = self._fetch_target_codes(concepts, target_vocabularies, on_progress, cancel_token)
        console.log(f"Initial cross-vocabulary mapping: {len(concepts)} CUIs -> {len(direct)} codes")

        self._report(on_progress, "Expanding hierarchies in target vocabularies...", 0, len(direct))
        records = direct + self._expand_target_hierarchies(direct, on_progress, cancel_token)

        if "NDC" in target_vocabularies:
            records = records + self._map_products(records, on_progress, cancel_token)

        check_cancelled(cancel_token)
        codes = self._deduplicate(records)
        console.log(f"[green]Removed {len(records) - len(codes)} duplicate codes; {len(codes)} unique codes.[/green]")
        self._report(on_progress, "Complete!", len(codes), len(codes))

        return BuildResult(
            root_node=root,
            root_concept_id=root_concept_id,
            source_vocabulary=root.vocabulary,
            domain=domain,
            target_vocabularies=target_vocabularies,
            codes=codes,
            source_concept_count=len(concepts),
        )
