# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from typing import Callable, Dict, Iterable, List, Optional

from rich.console import Console

from .cancellation import CancellationToken, check_cancelled
from .exceptions import GatewayError
from .gateway import CONCEPT_ID_PATTERN, UMLSGateway
from .models import HierarchyNode

console = Console()

ReconcileProgressCallback = Callable[[int, str], None]


class ConceptReconciler:
    """
    Maps source-vocabulary codes to the UMLS concepts (CUIs) they belong to.
    """

    def __init__(self, gateway: UMLSGateway):
        self.gateway = gateway

    def resolve_concept_id(self, vocabulary: str, code: str) -> Optional[str]:
        """
        Returns the CUI of the first atom of a source code, or None when the
        code has no atoms or the atom's concept reference is not a CUI.
        """
        atoms = self.gateway.get_source_atoms(vocabulary, code)
        if not atoms:
            return None
        concept_id = atoms[0].concept_id
        if concept_id and CONCEPT_ID_PATTERN.match(concept_id):
            return concept_id
        return None

    def reconcile(
        self,
        source_codes: Iterable[HierarchyNode],
        on_progress: Optional[ReconcileProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, HierarchyNode]:
        """
        Resolves each code in turn. The result maps every distinct CUI to the
        first source code that produced it, in discovery order. Codes whose
        lookup fails are logged and left out.
        """
        concepts: Dict[str, HierarchyNode] = {}
        for i, node in enumerate(source_codes):
            check_cancelled(cancel_token)
            if on_progress:
                on_progress(i, f"Mapping {node.label} to a concept")
            try:
                concept_id = self.resolve_concept_id(node.vocabulary, node.source_code)
            except GatewayError as e:
                console.log(f"[yellow]Skipping {node.label}: {e}[/yellow]")
                continue
            if concept_id and concept_id not in concepts:
                concepts[concept_id] = node
        return concepts

    def resolve_concept_ids(
        self,
        source_codes: Iterable[HierarchyNode],
        on_progress: Optional[ReconcileProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[str]:
        return list(self.reconcile(source_codes, on_progress, cancel_token))
