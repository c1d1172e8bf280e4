# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Typed access to the UTS REST API (and, for RxNorm, RxNav).

Every payload is mapped into the models in `models.py` here, so nothing
downstream of the gateway ever looks at raw JSON.
"""
import re
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests
from rich.console import Console

from .domain_classifier import uses_flat_traversal
from .exceptions import ConfigurationError, GatewayError
from .http_client import JSONClient
from .models import (
    Atom,
    Attribute,
    Concept,
    ConceptRelation,
    HierarchyNode,
    HierarchyView,
    ProductCode,
    SearchResult,
    SemanticType,
    SortMode,
)
from .rxnav import RELATED_DRUG_TERM_TYPES, RxNavClient

if TYPE_CHECKING:
    from .config import Settings

console = Console()

PLACEHOLDER_API_KEYS = frozenset({"", "your_umls_api_key_here"})
NO_RESULTS_SENTINEL = "NONE"
CONCEPT_ID_PATTERN = re.compile(r"^C\d+$")
NDC_PATTERN = re.compile(r"^[0-9]{10,11}$")


def _is_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def extract_source_code(raw: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    UTS reports some codes as resource URLs, e.g.
    https://uts-ws.nlm.nih.gov/rest/content/current/source/SNOMEDCT_US/73211009.
    Returns (code, url); url is None when the raw value was already a code.
    """
    if not raw:
        return "", None
    raw = str(raw).strip()
    if _is_url(raw):
        return raw.rstrip("/").rsplit("/", 1)[-1], raw
    return raw, None


def extract_concept_id(raw: Optional[str]) -> Optional[str]:
    """Returns the CUI at the end of a concept reference, or None."""
    code, _ = extract_source_code(raw)
    if CONCEPT_ID_PATTERN.match(code):
        return code
    return None


def is_ndc_candidate(value: Optional[str]) -> bool:
    """An NDC is 10 or 11 digits once its dashes are removed."""
    if not value:
        return False
    return bool(NDC_PATTERN.match(value.strip().replace("-", "")))


def normalize_ndc(value: str) -> str:
    """
    Puts an NDC into the undashed 11-digit (5-4-2) form. Dashed codes are
    padded segment by segment; anything else just loses its dashes.
    """
    value = value.strip()
    segments = value.split("-")
    if len(segments) == 3 and all(segment.isdigit() for segment in segments):
        labeler, product, package = segments
        return labeler.zfill(5) + product.zfill(4) + package.zfill(2)
    return value.replace("-", "")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _result_list(data: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not data:
        return []
    result = data.get("result")
    if isinstance(result, list):
        return result
    return []


class UMLSGateway:
    """
    Synchronous client for the terminology services used by a build.

    Not-found responses are normalized to empty results; every other remote
    failure surfaces as a GatewayError.
    """
    DEFAULT_BASE_URL = "https://uts-ws.nlm.nih.gov/rest"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        rxnav_base_url: str = RxNavClient.DEFAULT_BASE_URL,
        rxnav: Optional[RxNavClient] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        max_parallel_requests: int = 4,
        search_page_size: int = 75,
        search_max_pages: int = 4,
        atoms_page_size: int = 100,
        descendants_page_size: int = 200,
        descendants_max_pages: int = 50,
        default_vocabularies: Optional[Sequence[str]] = None,
    ):
        api_key = (api_key or "").strip()
        if api_key in PLACEHOLDER_API_KEYS:
            raise ConfigurationError(
                "UMLS API key is missing. Set PYUMLSCODESET_UMLS_API_KEY in your environment or .env file."
            )
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http = JSONClient(
            session_factory=session_factory, timeout=timeout, max_retries=max_retries, retry_backoff=retry_backoff
        )
        self.rxnav = rxnav or RxNavClient(self.http, rxnav_base_url)
        self.max_parallel_requests = max(1, max_parallel_requests)
        self.search_page_size = search_page_size
        self.search_max_pages = search_max_pages
        self.atoms_page_size = atoms_page_size
        self.descendants_page_size = descendants_page_size
        self.descendants_max_pages = descendants_max_pages
        self.default_vocabularies = list(default_vocabularies or [])

    @classmethod
    def from_settings(
        cls, config: "Settings", session_factory: Callable[[], requests.Session] = requests.Session
    ) -> "UMLSGateway":
        return cls(
            config.umls_api_key,
            base_url=config.uts_base_url,
            rxnav_base_url=config.rxnav_base_url,
            session_factory=session_factory,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            max_parallel_requests=config.max_parallel_requests,
            search_page_size=config.search_page_size,
            search_max_pages=config.search_max_pages,
            atoms_page_size=config.atoms_page_size,
            descendants_page_size=config.descendants_page_size,
            descendants_max_pages=config.descendants_max_pages,
            default_vocabularies=config.default_vocabularies,
        )

    # --- Plumbing ---

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        params = dict(params or {})
        params["apiKey"] = self.api_key
        return self.http.get_json(f"{self.base_url}{path}", params=params)

    def _source_path(self, vocabulary: str, code: str) -> str:
        return f"/content/current/source/{vocabulary}/{quote(str(code), safe='')}"

    def _run_parallel(self, calls: Sequence[Callable[[], Any]]) -> List[Any]:
        """Runs independent calls on a thread pool; results keep submission order."""
        workers = min(len(calls), self.max_parallel_requests) or 1
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(call) for call in calls]
            return [future.result() for future in futures]

    # --- Payload mapping ---

    @staticmethod
    def _to_concept(result: Dict[str, Any]) -> Concept:
        semantic_types = []
        for row in result.get("semanticTypes") or []:
            type_code, _ = extract_source_code(row.get("uri"))
            semantic_types.append(SemanticType(type_code=type_code, type_name=row.get("name") or ""))
        return Concept(
            concept_id=result.get("ui") or "",
            preferred_name=result.get("name") or "",
            semantic_types=semantic_types,
        )

    @staticmethod
    def _to_atom(row: Dict[str, Any]) -> Optional[Atom]:
        source_code, code_url = extract_source_code(row.get("code"))
        if not source_code:
            return None
        return Atom(
            atom_id=row.get("ui") or "",
            source_code=source_code,
            vocabulary=row.get("rootSource") or "",
            display_term=row.get("name") or "",
            term_type=row.get("termType"),
            code_url=code_url,
            concept_id=extract_concept_id(row.get("concept")),
            obsolete=_as_bool(row.get("obsolete")),
            suppressible=_as_bool(row.get("suppressible")),
        )

    def _to_atoms(self, rows: List[Dict[str, Any]]) -> List[Atom]:
        atoms = []
        for row in rows:
            atom = self._to_atom(row)
            if atom is None:
                console.log(f"[yellow]Skipping atom {row.get('ui')} without a source code.[/yellow]")
                continue
            atoms.append(atom)
        return atoms

    @staticmethod
    def _to_node(row: Dict[str, Any], vocabulary: str) -> HierarchyNode:
        source_code, _ = extract_source_code(row.get("ui") or row.get("code"))
        return HierarchyNode(
            vocabulary=row.get("rootSource") or vocabulary,
            source_code=source_code,
            display_term=row.get("name") or "",
            node_id=row.get("ui"),
            term_type=row.get("termType"),
        )

    @staticmethod
    def _to_attributes(data: Optional[Dict[str, Any]]) -> List[Attribute]:
        attributes = []
        for row in _result_list(data):
            value = row.get("value")
            attributes.append(Attribute(
                name=row.get("name") or row.get("attributeName") or "",
                value="" if value is None else str(value),
                source=row.get("rootSource"),
            ))
        return attributes

    # --- Search & concepts ---

    def search_concepts(
        self,
        term: str,
        vocabularies: Optional[Sequence[str]] = None,
        sort_mode: SortMode = SortMode.relevance,
    ) -> List[SearchResult]:
        """
        Free-text concept search. Pages are fetched in parallel and merged in
        page order; a concept appearing on several pages is kept once.
        """
        term = (term or "").strip()
        if not term:
            raise ValueError("Search term must not be empty.")

        def fetch_page(page_number: int):
            params: Dict[str, Any] = {
                "string": term,
                "pageSize": self.search_page_size,
                "pageNumber": page_number,
            }
            if vocabularies:
                params["sabs"] = ",".join(vocabularies)
            return self._get("/search/current", params)

        pages = self._run_parallel(
            [lambda n=n: fetch_page(n) for n in range(1, self.search_max_pages + 1)]
        )

        results: List[SearchResult] = []
        seen = set()
        for data in pages:
            rows = ((data or {}).get("result") or {}).get("results") or []
            for row in rows:
                concept_id = row.get("ui")
                if not concept_id or concept_id == NO_RESULTS_SENTINEL or concept_id in seen:
                    continue
                seen.add(concept_id)
                results.append(SearchResult(
                    concept_id=concept_id,
                    name=row.get("name") or "",
                    root_source=row.get("rootSource") or "",
                    uri=row.get("uri"),
                ))

        if sort_mode == SortMode.alphabetical:
            results.sort(key=lambda r: r.name.casefold())
        return results

    def get_concept(self, concept_id: str) -> Concept:
        data = self._get(f"/content/current/CUI/{concept_id}")
        if not data or not data.get("result"):
            raise GatewayError(404, f"Concept {concept_id} not found")
        return self._to_concept(data["result"])

    def _get_concept_atoms(self, concept_id: str, vocabularies: Optional[Sequence[str]]) -> List[Atom]:
        params: Dict[str, Any] = {
            "pageSize": self.atoms_page_size,
            "includeSuppressible": "true",
            "includeObsolete": "true",
        }
        vocabularies = vocabularies or self.default_vocabularies
        if vocabularies:
            params["sabs"] = ",".join(vocabularies)
        data = self._get(f"/content/current/CUI/{concept_id}/atoms", params)
        return self._to_atoms(_result_list(data))

    def get_concept_with_atoms(
        self, concept_id: str, vocabularies: Optional[Sequence[str]] = None
    ) -> Tuple[Concept, List[Atom]]:
        concept, atoms = self._run_parallel([
            lambda: self.get_concept(concept_id),
            lambda: self._get_concept_atoms(concept_id, vocabularies),
        ])
        return concept, atoms

    def get_concept_attributes(self, concept_id: str) -> List[Attribute]:
        return self._to_attributes(self._get(f"/content/current/CUI/{concept_id}/attributes"))

    def get_concept_relations(self, concept_id: str) -> List[ConceptRelation]:
        relations = []
        for row in _result_list(self._get(f"/content/current/CUI/{concept_id}/relations")):
            related_id, _ = extract_source_code(row.get("relatedId"))
            relations.append(ConceptRelation(
                related_id=related_id,
                related_name=row.get("relatedIdName") or "",
                relation_label=row.get("relationLabel") or "",
                additional_relation_label=row.get("additionalRelationLabel") or None,
            ))
        return relations

    # --- Source-asserted identifiers ---

    def get_source_atoms(self, vocabulary: str, code: str) -> List[Atom]:
        """Looks up a source code, then follows its atoms reference."""
        data = self._get(self._source_path(vocabulary, code))
        result = (data or {}).get("result") or {}
        atoms_url = result.get("atoms")
        if not atoms_url or atoms_url == NO_RESULTS_SENTINEL:
            return []
        atoms = self.http.get_json(atoms_url, params={"apiKey": self.api_key})
        return self._to_atoms(_result_list(atoms))

    def get_source_attributes(self, vocabulary: str, code: str) -> List[Attribute]:
        return self._to_attributes(self._get(f"{self._source_path(vocabulary, code)}/attributes"))

    def get_ancestors(self, vocabulary: str, code: str) -> List[HierarchyNode]:
        data = self._get(f"{self._source_path(vocabulary, code)}/ancestors")
        return [self._to_node(row, vocabulary) for row in _result_list(data)]

    def get_descendants(self, vocabulary: str, code: str) -> List[HierarchyNode]:
        """
        Immediate descendants of a source code. RxNorm has no usable
        descendant tree in UTS, so it is answered by RxNav related concepts.
        """
        if uses_flat_traversal(vocabulary):
            return self.get_related_drug_concepts(code)

        path = f"{self._source_path(vocabulary, code)}/descendants"
        nodes: List[HierarchyNode] = []
        page_number = 1
        while True:
            data = self._get(path, {"pageSize": self.descendants_page_size, "pageNumber": page_number})
            rows = _result_list(data)
            if not rows:
                break
            nodes.extend(self._to_node(row, vocabulary) for row in rows)
            if len(rows) < self.descendants_page_size:
                break
            if page_number >= self.descendants_max_pages:
                console.log(
                    f"[yellow]Stopped paging descendants of {vocabulary}:{code} after "
                    f"{page_number} pages ({len(nodes)} codes).[/yellow]"
                )
                break
            page_number += 1
        return nodes

    def get_hierarchy(self, vocabulary: str, code: str) -> HierarchyView:
        ancestors, descendants = self._run_parallel([
            lambda: self.get_ancestors(vocabulary, code),
            lambda: self.get_descendants(vocabulary, code),
        ])
        return HierarchyView(
            anchor=HierarchyNode(vocabulary=vocabulary, source_code=code),
            ancestors=list(reversed(ancestors)),
            descendants=descendants,
        )

    # --- Drugs ---

    def get_related_drug_concepts(self, code: str) -> List[HierarchyNode]:
        rows = self.rxnav.get_related_concepts(code, RELATED_DRUG_TERM_TYPES)
        return [
            HierarchyNode(
                vocabulary="RXNORM",
                source_code=str(row["rxcui"]),
                display_term=row.get("name") or "",
                node_id=str(row["rxcui"]),
                term_type=row.get("tty"),
            )
            for row in rows
        ]

    @staticmethod
    def _ndc_attributes(attributes: List[Attribute]) -> List[Tuple[str, str]]:
        return [
            (a.value.strip(), f"{a.name} {a.value.strip()}")
            for a in attributes
            if a.value.strip() and ("NDC" in a.name.upper() or is_ndc_candidate(a.value))
        ]

    def map_drug_to_product(self, drug_code: str, concept_id: Optional[str] = None) -> List[ProductCode]:
        """
        Collects NDC product codes for an RxNorm code from RxNav and from the
        UMLS attribute listings. Codes are normalized to the 11-digit form;
        a code reported by several sources is kept once, attributed to the
        first source that reported it.
        """
        sources: List[Tuple[str, Callable[[], List[Tuple[str, str]]]]] = [
            ("rxnav", lambda: [(ndc, f"NDC {ndc}") for ndc in self.rxnav.get_ndcs(drug_code)]),
            ("umls-source-attributes",
             lambda: self._ndc_attributes(self.get_source_attributes("RXNORM", drug_code))),
        ]
        if concept_id:
            sources.append(
                ("umls-concept-attributes",
                 lambda: self._ndc_attributes(self.get_concept_attributes(concept_id)))
            )

        products: Dict[str, ProductCode] = {}
        failures: List[GatewayError] = []
        for origin, fetch in sources:
            try:
                rows = fetch()
            except GatewayError as e:
                console.log(f"[yellow]NDC lookup via {origin} failed for RXNORM:{drug_code}: {e}[/yellow]")
                failures.append(e)
                continue
            for code, name in rows:
                code = normalize_ndc(code)
                if code not in products:
                    products[code] = ProductCode(code=code, name=name, origin=origin)

        if failures and len(failures) == len(sources):
            raise failures[-1]
        return list(products.values())
