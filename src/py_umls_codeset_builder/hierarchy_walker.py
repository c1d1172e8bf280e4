# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from typing import Callable, Iterator, List, Optional, Set

from rich.console import Console

from .cancellation import CancellationToken, check_cancelled
from .domain_classifier import uses_flat_traversal
from .exceptions import GatewayError
from .gateway import UMLSGateway, extract_source_code
from .models import HierarchyNode

console = Console()

WalkProgressCallback = Callable[[int, str], None]


class HierarchyWalker:
    """
    Collects every descendant of a code within one vocabulary.

    Most vocabularies are walked depth-first, one immediate-descendant call
    per code. RxNorm is answered with a single related-concepts call instead.
    """

    def __init__(self, gateway: UMLSGateway):
        self.gateway = gateway

    def walk_descendants(
        self,
        vocabulary: str,
        root_code: str,
        on_progress: Optional[WalkProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[HierarchyNode]:
        """Returns the descendants of root_code (root excluded) in pre-order."""
        if uses_flat_traversal(vocabulary):
            return self._walk_flat(vocabulary, root_code, on_progress, cancel_token)
        return self._walk_recursive(vocabulary, root_code, on_progress, cancel_token)

    def _fetch_children(self, vocabulary: str, code: str) -> List[HierarchyNode]:
        try:
            return self.gateway.get_descendants(vocabulary, code)
        except GatewayError as e:
            console.log(f"[yellow]Could not fetch descendants of {vocabulary}:{code}: {e}[/yellow]")
            return []

    @staticmethod
    def _resolve(node: HierarchyNode) -> HierarchyNode:
        code, _ = extract_source_code(node.source_code)
        if code == node.source_code:
            return node
        return node.model_copy(update={"source_code": code})

    def _walk_flat(
        self,
        vocabulary: str,
        root_code: str,
        on_progress: Optional[WalkProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> List[HierarchyNode]:
        check_cancelled(cancel_token)
        nodes = []
        for node in self._fetch_children(vocabulary, root_code):
            node = self._resolve(node)
            if node.source_code:
                nodes.append(node)
        if on_progress:
            on_progress(len(nodes), f"Related {vocabulary} concepts of {root_code}")
        return nodes

    def _walk_recursive(
        self,
        vocabulary: str,
        root_code: str,
        on_progress: Optional[WalkProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> List[HierarchyNode]:
        visited: Set[str] = set()
        results: List[HierarchyNode] = []
        # Each frame holds the not-yet-visited children of one expanded code.
        stack: List[Iterator[HierarchyNode]] = []

        def expand(code: str):
            if code in visited:
                return
            visited.add(code)
            if on_progress:
                on_progress(len(visited), f"Walking {vocabulary}:{code}")
            stack.append(iter(self._fetch_children(vocabulary, code)))

        expand(root_code)
        while stack:
            check_cancelled(cancel_token)
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                continue
            child = self._resolve(child)
            if not child.source_code or child.source_code in visited:
                continue
            results.append(child)
            expand(child.source_code)

        return results
