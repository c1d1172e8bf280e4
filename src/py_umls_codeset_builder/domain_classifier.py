# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
This module provides the lookup tables that drive a code set build:
which vocabulary is authoritative for a clinical domain, which vocabularies
a build targets, and how UMLS semantic types map onto domains.

Two semantic type tables are kept on purpose. SEMANTIC_TYPE_TO_BUILD_DOMAIN
chooses the target vocabularies of a build, SEMANTIC_TYPE_TO_DISPLAY_DOMAIN
chooses how atoms are grouped on screen. They overlap but are not the same
(T034 is an observation for a build and a lab result for display).

Domain defaults follow OMOP CDM conventions for standard vocabularies.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rich.console import Console

from .models import Atom, Domain, SemanticType

console = Console()

# Default mappings for unclassified entities
DEFAULT_BUILD_DOMAIN = Domain.condition
DEFAULT_DISPLAY_DOMAIN = "disease"
DEFAULT_STANDARD_VOCABULARY = "SNOMEDCT_US"

# The one vocabulary per domain with the richest hierarchy.
STANDARD_VOCABULARIES: Dict[Domain, str] = {
    Domain.condition: "SNOMEDCT_US",
    Domain.drug: "RXNORM",
    Domain.measurement: "LNC",
    Domain.procedure: "SNOMEDCT_US",
    Domain.observation: "SNOMEDCT_US",
}

# Vocabularies a build collects codes from, in priority order.
BUILD_DOMAIN_VOCABULARIES: Dict[Domain, List[str]] = {
    Domain.condition: ["ICD10CM", "SNOMEDCT_US", "ICD9CM"],
    Domain.observation: ["ICD10CM", "SNOMEDCT_US", "LNC", "CPT", "HCPCS"],
    Domain.drug: ["NDC", "RXNORM", "CPT", "CVX", "HCPCS", "ATC"],
    Domain.measurement: ["LNC", "CPT", "SNOMEDCT_US", "HCPCS"],
    Domain.procedure: ["CPT", "HCPCS", "SNOMEDCT_US", "ICD9PCS", "LNC", "ICD10PCS"],
}

# Vocabularies grouped for display.
DISPLAY_DOMAIN_VOCABULARIES: Dict[str, List[str]] = {
    "disease": ["SNOMEDCT_US", "ICD10CM", "ICD9CM"],
    "drug": ["RXNORM", "ATC", "NDC"],
    "lab": ["LNC"],
    "procedure": ["CPT", "HCPCS", "ICD10PCS"],
    "vaccine": ["CVX"],
}

DISPLAY_DOMAIN_LABELS: Dict[str, str] = {
    "disease": "Disease Codes",
    "drug": "Medication Codes",
    "lab": "Lab Test Codes",
    "procedure": "Procedure Codes",
    "vaccine": "Vaccine Codes",
}

# UMLS Semantic Type (TUI) to build domain
SEMANTIC_TYPE_TO_BUILD_DOMAIN: Dict[str, Domain] = {
    "T047": Domain.condition,  # Disease or Syndrome
    "T046": Domain.condition,  # Pathologic Function
    "T048": Domain.condition,  # Mental or Behavioral Dysfunction
    "T191": Domain.condition,  # Neoplastic Process
    "T200": Domain.drug,  # Clinical Drug
    "T121": Domain.drug,  # Pharmacologic Substance
    "T109": Domain.drug,  # Organic Chemical
    "T059": Domain.measurement,  # Laboratory Procedure
    "T034": Domain.observation,  # Laboratory or Test Result
    "T060": Domain.procedure,  # Diagnostic Procedure
    "T061": Domain.procedure,  # Therapeutic or Preventive Procedure
    "T062": Domain.procedure,  # Research Activity
}

# UMLS Semantic Type (TUI) to display grouping
SEMANTIC_TYPE_TO_DISPLAY_DOMAIN: Dict[str, str] = {
    "T047": "disease",  # Disease or Syndrome
    "T046": "disease",  # Pathologic Function
    "T048": "disease",  # Mental or Behavioral Dysfunction
    "T191": "disease",  # Neoplastic Process
    "T200": "drug",  # Clinical Drug
    "T121": "drug",  # Pharmacologic Substance
    "T109": "drug",  # Organic Chemical
    "T059": "lab",  # Laboratory Procedure
    "T034": "lab",  # Laboratory or Test Result
    "T060": "procedure",  # Diagnostic Procedure
    "T061": "procedure",  # Therapeutic or Preventive Procedure
}

# Vocabularies whose codes support descendant navigation.
HIERARCHICAL_VOCABULARIES = frozenset({
    "SNOMEDCT_US", "ICD10CM", "ICD9CM", "RXNORM", "ATC", "LNC", "ICD10PCS",
})

# RxNav links clinical and branded drugs in both directions, so recursing
# over its related concepts never terminates. One flat call instead.
FLAT_TRAVERSAL_VOCABULARIES = frozenset({"RXNORM"})

# Vocabulary priority order for display
VOCABULARY_SORT_ORDER: Dict[str, int] = {
    "SNOMEDCT_US": 1,
    "ICD10CM": 2,
    "ICD9CM": 3,
    "LNC": 4,
    "CPT": 5,
    "HCPCS": 6,
    "RXNORM": 7,
    "ATC": 8,
    "NDC": 9,
    "CVX": 10,
    "ICD10PCS": 11,
    "ICD9PCS": 12,
    "NDDF": 13,
}
UNRANKED_VOCABULARY = 999

# (OMOP vocabulary_id, display name, UMLS source abbreviation, description)
VOCABULARY_MAPPINGS: List[Tuple[str, str, str, str]] = [
    ("ICD10CM", "ICD10CM", "ICD10CM", "ICD-10 Clinical Modification"),
    ("SNOMED", "SNOMED", "SNOMEDCT_US", "SNOMED CT US Edition"),
    ("ICD9CM", "ICD9CM", "ICD9CM", "ICD-9 Clinical Modification"),
    ("LOINC", "LOINC", "LNC", "Logical Observation Identifiers"),
    ("CPT4", "CPT4", "CPT", "Current Procedural Terminology"),
    ("HCPCS", "HCPCS", "HCPCS", "Healthcare Common Procedure Coding System"),
    ("RxNorm", "RxNorm", "RXNORM", "RxNorm (Drugs)"),
    ("NDC", "NDC", "NDC", "National Drug Code"),
    ("CVX", "CVX", "CVX", "Vaccines Administered"),
    ("ATC", "ATC", "ATC", "Anatomical Therapeutic Chemical"),
    ("ICD9Proc", "ICD9PCS", "ICD9PCS", "ICD-9 Procedure Codes"),
    ("ICD10PCS", "ICD10PCS", "ICD10PCS", "ICD-10 Procedure Coding System"),
]

_UMLS_TO_VOCABULARY_ID = {umls: vocab_id for vocab_id, _, umls, _ in VOCABULARY_MAPPINGS}
_VOCABULARY_ID_TO_UMLS = {vocab_id: umls for vocab_id, _, umls, _ in VOCABULARY_MAPPINGS}
_UMLS_TO_DISPLAY_NAME = {umls: display for _, display, umls, _ in VOCABULARY_MAPPINGS}
_DISPLAY_NAME_TO_UMLS = {display: umls for _, display, umls, _ in VOCABULARY_MAPPINGS}


SemanticTypeLike = Union[SemanticType, str]


def _type_code(semantic_type: SemanticTypeLike) -> str:
    if isinstance(semantic_type, SemanticType):
        return semantic_type.type_code
    # Accept a bare TUI or a semantic type URI ending in the TUI.
    return str(semantic_type).rstrip("/").split("/")[-1]


def standard_vocabulary_for(domain: Domain) -> str:
    """Maps a build domain to its authoritative vocabulary."""
    return STANDARD_VOCABULARIES.get(Domain(domain), DEFAULT_STANDARD_VOCABULARY)


def target_vocabularies_for(domain: Domain) -> List[str]:
    """Maps a build domain to the ordered vocabularies a build collects."""
    return list(BUILD_DOMAIN_VOCABULARIES[Domain(domain)])


def domain_for_semantic_types(semantic_types: Optional[Sequence[SemanticTypeLike]]) -> Domain:
    """
    Returns the build domain of the first semantic type found in the table.
    Input order decides ties. Unknown or missing types fall back to condition.
    """
    for semantic_type in semantic_types or []:
        domain = SEMANTIC_TYPE_TO_BUILD_DOMAIN.get(_type_code(semantic_type))
        if domain is not None:
            return domain
    return DEFAULT_BUILD_DOMAIN


def display_domain_for_semantic_types(semantic_types: Optional[Sequence[SemanticTypeLike]]) -> str:
    """Same lookup as domain_for_semantic_types, against the display table."""
    for semantic_type in semantic_types or []:
        domain = SEMANTIC_TYPE_TO_DISPLAY_DOMAIN.get(_type_code(semantic_type))
        if domain is not None:
            return domain
    return DEFAULT_DISPLAY_DOMAIN


def is_hierarchical(vocabulary: str) -> bool:
    return vocabulary in HIERARCHICAL_VOCABULARIES


def uses_flat_traversal(vocabulary: str) -> bool:
    return vocabulary in FLAT_TRAVERSAL_VOCABULARIES


def vocabulary_sort_key(vocabulary: str) -> int:
    return VOCABULARY_SORT_ORDER.get(vocabulary, UNRANKED_VOCABULARY)


def deduplicate_and_sort_atoms(atoms: Iterable[Atom]) -> List[Atom]:
    """
    Collapses atoms sharing (vocabulary, source_code), keeping the preferred
    term (PT) if one exists and the first occurrence otherwise, then orders
    them by vocabulary priority. The sort is stable within a vocabulary.
    """
    unique: Dict[Tuple[str, str], Atom] = {}
    for atom in atoms:
        if atom.key not in unique or atom.term_type == "PT":
            unique[atom.key] = atom
    return sorted(unique.values(), key=lambda a: vocabulary_sort_key(a.vocabulary))


def group_atoms_by_display_domain(
    atoms: Iterable[Atom],
    semantic_types: Optional[Sequence[SemanticTypeLike]] = None,
) -> Tuple[List[Tuple[str, List[Atom]]], str]:
    """
    Groups deduplicated atoms by the display domain of their vocabulary.
    Atoms from vocabularies outside every group land in the concept's primary
    display domain. Returns the non-empty groups and the primary domain.
    """
    primary_domain = display_domain_for_semantic_types(semantic_types)
    grouped: Dict[str, List[Atom]] = {domain: [] for domain in DISPLAY_DOMAIN_VOCABULARIES}

    for atom in deduplicate_and_sort_atoms(atoms):
        for domain, vocabularies in DISPLAY_DOMAIN_VOCABULARIES.items():
            if atom.vocabulary in vocabularies:
                grouped[domain].append(atom)
                break
        else:
            grouped[primary_domain].append(atom)

    non_empty = [(domain, members) for domain, members in grouped.items() if members]
    return non_empty, primary_domain


def _lookup(table: Dict[str, str], name: str, kind: str) -> str:
    if name in table:
        return table[name]
    console.log(f"[yellow]Unknown {kind}: {name}[/yellow]")
    return name


def umls_to_vocabulary_id(umls_vocabulary: str) -> str:
    """Example: SNOMEDCT_US -> SNOMED"""
    return _lookup(_UMLS_TO_VOCABULARY_ID, umls_vocabulary, "UMLS vocabulary")


def vocabulary_id_to_umls(vocabulary_id: str) -> str:
    """Example: LOINC -> LNC"""
    return _lookup(_VOCABULARY_ID_TO_UMLS, vocabulary_id, "vocabulary_id")


def umls_to_display_name(umls_vocabulary: str) -> str:
    return _lookup(_UMLS_TO_DISPLAY_NAME, umls_vocabulary, "UMLS vocabulary")


def display_name_to_umls(display_name: str) -> str:
    return _lookup(_DISPLAY_NAME_TO_UMLS, display_name, "display name")
