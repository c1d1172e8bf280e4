# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from collections import Counter
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class Domain(str, Enum):
    """Clinical domain that decides which vocabularies a build targets."""
    condition = "condition"
    drug = "drug"
    measurement = "measurement"
    procedure = "procedure"
    observation = "observation"


class SortMode(str, Enum):
    relevance = "relevance"
    alphabetical = "alphabetical"


class _ValueModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class SemanticType(_ValueModel):
    """A UMLS semantic type (TUI) assigned to a concept."""
    type_code: str
    type_name: str


class Concept(_ValueModel):
    """
    Represents a single UMLS Concept (CUI).
    Vocabulary independent; resolved on demand and never mutated.
    """
    concept_id: str
    preferred_name: str
    semantic_types: List[SemanticType] = []


class Atom(_ValueModel):
    """
    A concept's representation inside one source vocabulary.
    Two atoms are the same code when (vocabulary, source_code) match,
    whatever their atom_id.
    """
    atom_id: str
    source_code: str
    vocabulary: str
    display_term: str
    term_type: Optional[str] = None
    code_url: Optional[str] = None  # Original URL when the raw code was URL-shaped
    concept_id: Optional[str] = None
    obsolete: bool = False
    suppressible: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.vocabulary, self.source_code)


class HierarchyNode(_ValueModel):
    """A (vocabulary, code, term) triple used while traversing a hierarchy."""
    vocabulary: str
    source_code: str
    display_term: str = ""
    node_id: Optional[str] = None
    term_type: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.vocabulary, self.source_code)

    @property
    def label(self) -> str:
        return f"{self.vocabulary}:{self.source_code}"


class HierarchyView(_ValueModel):
    """Ancestors (broad to specific) and immediate descendants of one code."""
    anchor: HierarchyNode
    ancestors: List[HierarchyNode]
    descendants: List[HierarchyNode]


class ConceptRelation(_ValueModel):
    """A concept-level relation, e.g. RB (broader) or CHD (child)."""
    related_id: str
    related_name: str
    relation_label: str
    additional_relation_label: Optional[str] = None


class SearchResult(_ValueModel):
    concept_id: str
    name: str
    root_source: str
    uri: Optional[str] = None


class Attribute(_ValueModel):
    """A row of a UMLS attribute listing."""
    name: str
    value: str
    source: Optional[str] = None


class ProductCode(_ValueModel):
    """A dispensable product code (NDC) and the source that reported it."""
    code: str
    name: str
    origin: str


class CodeRecord(_ValueModel):
    """
    One row of the final code set. `origin` records which build stage
    produced it and `source_code` the VOCAB:CODE that led to it.
    """
    concept_id: str
    concept_name: str
    vocabulary: str
    code: str
    term: str
    code_url: Optional[str] = None
    origin: Literal["direct", "hierarchy", "product"] = "direct"
    source_code: Optional[str] = None
    dose_form: Optional[str] = None
    strength: Optional[str] = None
    source_rx_concept_id: Optional[str] = None
    product_origin: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.vocabulary, self.code)


class BuildProgress(_ValueModel):
    phase: str
    current: int = 0
    total: int = 0


class BuildResult(_ValueModel):
    """
    The artifact of one build. Created once, never mutated and never persisted.
    """
    root_node: HierarchyNode
    root_concept_id: Optional[str] = None
    source_vocabulary: str
    domain: Domain
    target_vocabularies: List[str]
    codes: List[CodeRecord]
    source_concept_count: int

    @property
    def total_count(self) -> int:
        return len(self.codes)

    def counts_by_vocabulary(self) -> Dict[str, int]:
        return dict(Counter(record.vocabulary for record in self.codes))
