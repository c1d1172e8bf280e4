# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
# Tests for the UTS gateway, against mocked HTTP responses
from urllib.parse import parse_qs, urlparse

import pytest

from py_umls_codeset_builder.exceptions import ConfigurationError, GatewayError
from py_umls_codeset_builder.gateway import (
    UMLSGateway,
    extract_concept_id,
    extract_source_code,
    is_ndc_candidate,
    normalize_ndc,
)
from py_umls_codeset_builder.models import SortMode

from .fakes import RXNAV, UTS

SOURCE = f"{UTS}/content/current/source"


def _param(request, name):
    """Query parameter with its original casing."""
    return parse_qs(urlparse(request.url).query)[name][0]


# --- Helpers ---

def test_extract_source_code_from_url():
    code, url = extract_source_code(f"{SOURCE}/SNOMEDCT_US/73211009")
    assert code == "73211009"
    assert url == f"{SOURCE}/SNOMEDCT_US/73211009"


def test_extract_source_code_plain_code():
    assert extract_source_code("G43.909") == ("G43.909", None)
    assert extract_source_code(None) == ("", None)


def test_extract_concept_id():
    assert extract_concept_id(f"{UTS}/content/current/CUI/C0149931") == "C0149931"
    assert extract_concept_id("NONE") is None
    assert extract_concept_id(None) is None


@pytest.mark.parametrize("value,expected", [
    ("00071015523", True),
    ("0071-0155-23", True),
    ("ABC123", False),
    ("123456789", False),
    ("", False),
])
def test_is_ndc_candidate(value, expected):
    assert is_ndc_candidate(value) is expected


@pytest.mark.parametrize("value,expected", [
    ("0071-0155-23", "00071015523"),
    ("50090-347-0", "50090034700"),
    ("12345-6789-01", "12345678901"),
    ("00071015523", "00071015523"),
    (" 0071015523 ", "0071015523"),
])
def test_normalize_ndc(value, expected):
    assert normalize_ndc(value) == expected


# --- Construction ---

@pytest.mark.parametrize("key", ["", "   ", "your_umls_api_key_here"])
def test_missing_api_key_raises_before_any_request(key, requests_mock):
    """A gateway without a usable key must refuse to be built."""
    with pytest.raises(ConfigurationError):
        UMLSGateway(key)
    assert requests_mock.call_count == 0


def test_from_settings_uses_configured_urls(monkeypatch):
    from py_umls_codeset_builder.config import settings
    monkeypatch.setattr(settings, "uts_base_url", "https://uts.example.org/rest/")
    monkeypatch.setattr(settings, "rxnav_base_url", "https://rxnav.example.org/REST")
    gateway = UMLSGateway.from_settings(settings)
    assert gateway.base_url == "https://uts.example.org/rest"
    assert gateway.rxnav.base_url == "https://rxnav.example.org/REST"


# --- Search ---

SEARCH_PAGES = {
    "1": [
        {"ui": "C0149931", "name": "Migraine Disorders", "rootSource": "MTH"},
        {"ui": "C0154723", "name": "Aura migraine", "rootSource": "MTH"},
    ],
    "2": [
        {"ui": "C0149931", "name": "Migraine Disorders", "rootSource": "MSH"},
        {"ui": "C0009088", "name": "cluster headache", "rootSource": "MTH"},
    ],
    "3": [{"ui": "NONE", "name": "NO RESULTS"}],
    "4": [],
}


def _search_callback(request, context):
    return {"result": {"results": SEARCH_PAGES[_param(request, "pageNumber")]}}


def test_search_concepts_merges_pages_in_order(gateway, requests_mock):
    """Pages are merged in page order, duplicates and the NONE sentinel dropped."""
    requests_mock.get(f"{UTS}/search/current", json=_search_callback)

    results = gateway.search_concepts("migraine")

    assert [r.concept_id for r in results] == ["C0149931", "C0154723", "C0009088"]
    assert requests_mock.call_count == 4
    assert {_param(r, "pageSize") for r in requests_mock.request_history} == {"75"}


def test_search_concepts_alphabetical(gateway, requests_mock):
    requests_mock.get(f"{UTS}/search/current", json=_search_callback)
    results = gateway.search_concepts("migraine", sort_mode=SortMode.alphabetical)
    assert [r.name for r in results] == ["Aura migraine", "cluster headache", "Migraine Disorders"]


def test_search_concepts_passes_vocabulary_filter(gateway, requests_mock):
    requests_mock.get(f"{UTS}/search/current", json={"result": {"results": []}})
    gateway.search_concepts("migraine", vocabularies=["SNOMEDCT_US", "ICD10CM"])
    assert _param(requests_mock.last_request, "sabs") == "SNOMEDCT_US,ICD10CM"
    assert _param(requests_mock.last_request, "apiKey") == "test_api_key"


def test_search_concepts_rejects_empty_term(gateway):
    with pytest.raises(ValueError):
        gateway.search_concepts("   ")


# --- Concepts and atoms ---

CONCEPT = {
    "result": {
        "ui": "C0149931",
        "name": "Migraine Disorders",
        "semanticTypes": [
            {"name": "Disease or Syndrome", "uri": f"{UTS}/semantic-network/current/TUI/T047"},
        ],
    }
}

ATOMS = {
    "result": [
        {
            "ui": "A1",
            "name": "Migraine",
            "termType": "PT",
            "rootSource": "SNOMEDCT_US",
            "code": f"{SOURCE}/SNOMEDCT_US/37796009",
            "concept": f"{UTS}/content/current/CUI/C0149931",
            "obsolete": "false",
            "suppressible": "true",
        },
        {"ui": "A2", "name": "Missing code", "rootSource": "ICD10CM", "code": None},
    ]
}


def test_get_concept_with_atoms(gateway, requests_mock):
    requests_mock.get(f"{UTS}/content/current/CUI/C0149931", json=CONCEPT)
    requests_mock.get(f"{UTS}/content/current/CUI/C0149931/atoms", json=ATOMS)

    concept, atoms = gateway.get_concept_with_atoms("C0149931", ["SNOMEDCT_US"])

    assert concept.preferred_name == "Migraine Disorders"
    assert concept.semantic_types[0].type_code == "T047"
    assert len(atoms) == 1
    first = atoms[0]
    assert first.source_code == "37796009"
    assert first.code_url == f"{SOURCE}/SNOMEDCT_US/37796009"
    assert first.concept_id == "C0149931"
    assert first.obsolete is False
    assert first.suppressible is True

    atoms_request = [r for r in requests_mock.request_history if r.path.endswith("/atoms")][0]
    assert _param(atoms_request, "includeObsolete") == "true"
    assert _param(atoms_request, "includeSuppressible") == "true"
    assert _param(atoms_request, "sabs") == "SNOMEDCT_US"


def test_get_concept_with_atoms_missing_atoms(gateway, requests_mock):
    requests_mock.get(f"{UTS}/content/current/CUI/C0149931", json=CONCEPT)
    requests_mock.get(f"{UTS}/content/current/CUI/C0149931/atoms", status_code=404)
    _, atoms = gateway.get_concept_with_atoms("C0149931")
    assert atoms == []


def test_get_concept_not_found_is_an_error(gateway, requests_mock):
    requests_mock.get(f"{UTS}/content/current/CUI/C9999999", status_code=404)
    with pytest.raises(GatewayError) as exc_info:
        gateway.get_concept("C9999999")
    assert exc_info.value.status == 404


def test_get_source_atoms_follows_atoms_reference(gateway, requests_mock):
    atoms_url = f"{SOURCE}/ICD10CM/G43.909/atoms"
    requests_mock.get(f"{SOURCE}/ICD10CM/G43.909", json={"result": {"ui": "G43.909", "atoms": atoms_url}})
    requests_mock.get(atoms_url, json=ATOMS)

    atoms = gateway.get_source_atoms("ICD10CM", "G43.909")

    assert [a.concept_id for a in atoms] == ["C0149931"]
    assert _param(requests_mock.last_request, "apiKey") == "test_api_key"


def test_get_source_atoms_without_atoms(gateway, requests_mock):
    requests_mock.get(f"{SOURCE}/ICD10CM/G43", json={"result": {"ui": "G43", "atoms": "NONE"}})
    requests_mock.get(f"{SOURCE}/ICD10CM/XXX", status_code=404)
    assert gateway.get_source_atoms("ICD10CM", "G43") == []
    assert gateway.get_source_atoms("ICD10CM", "XXX") == []


# --- Hierarchy ---

def _rows(*codes):
    return {"result": [{"ui": code, "name": f"Term {code}", "rootSource": "SNOMEDCT_US"} for code in codes]}


@pytest.mark.parametrize("resource", ["ancestors", "descendants", "attributes"])
def test_not_found_is_empty(gateway, requests_mock, resource):
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/1/{resource}", status_code=404)
    method = {
        "ancestors": gateway.get_ancestors,
        "descendants": gateway.get_descendants,
        "attributes": gateway.get_source_attributes,
    }[resource]
    assert method("SNOMEDCT_US", "1") == []


def test_get_descendants_stops_at_short_page(requests_mock):
    gateway = UMLSGateway("test_api_key", max_retries=0, descendants_page_size=2, descendants_max_pages=5)
    pages = {"1": _rows("11", "12"), "2": _rows("13")}
    requests_mock.get(
        f"{SOURCE}/SNOMEDCT_US/1/descendants",
        json=lambda request, context: pages[_param(request, "pageNumber")],
    )

    nodes = gateway.get_descendants("SNOMEDCT_US", "1")

    assert [n.source_code for n in nodes] == ["11", "12", "13"]
    assert requests_mock.call_count == 2


def test_get_descendants_stops_at_page_ceiling(requests_mock):
    gateway = UMLSGateway("test_api_key", max_retries=0, descendants_page_size=2, descendants_max_pages=3)
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/1/descendants", json=_rows("11", "12"))

    nodes = gateway.get_descendants("SNOMEDCT_US", "1")

    assert len(nodes) == 6
    assert requests_mock.call_count == 3


def test_get_descendants_rxnorm_uses_related_concepts(gateway, requests_mock):
    requests_mock.get(f"{RXNAV}/rxcui/5640/related.json", json={
        "relatedGroup": {"conceptGroup": [
            {"tty": "SCD", "conceptProperties": [{"rxcui": "310965", "name": "ibuprofen 200 MG Oral Tablet", "tty": "SCD"}]},
            {"tty": "SBD"},
        ]}
    })

    nodes = gateway.get_descendants("RXNORM", "5640")

    assert [(n.vocabulary, n.source_code, n.term_type) for n in nodes] == [("RXNORM", "310965", "SCD")]
    assert _param(requests_mock.last_request, "tty") == "SCD SBD SCDC SBDC"


def test_get_hierarchy_orders_ancestors_broad_to_specific(gateway, requests_mock):
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/37796009/ancestors", json=_rows("near", "far", "root"))
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/37796009/descendants", json=_rows("child"))

    view = gateway.get_hierarchy("SNOMEDCT_US", "37796009")

    assert [n.source_code for n in view.ancestors] == ["root", "far", "near"]
    assert [n.source_code for n in view.descendants] == ["child"]
    assert view.anchor.label == "SNOMEDCT_US:37796009"


def test_get_concept_relations(gateway, requests_mock):
    requests_mock.get(f"{UTS}/content/current/CUI/C0149931/relations", json={"result": [{
        "relatedId": f"{UTS}/content/current/CUI/C0018681",
        "relatedIdName": "Headache",
        "relationLabel": "RB",
        "additionalRelationLabel": "",
    }]})
    relations = gateway.get_concept_relations("C0149931")
    assert relations[0].related_id == "C0018681"
    assert relations[0].relation_label == "RB"
    assert relations[0].additional_relation_label is None


# --- Drug to product ---

def test_map_drug_to_product_merges_sources(gateway, requests_mock):
    """A code reported by several sources keeps the first origin."""
    requests_mock.get(f"{RXNAV}/rxcui/310965/ndcs.json", json={"ndcGroup": {"ndcList": {"ndc": ["00071015523"]}}})
    requests_mock.get(f"{SOURCE}/RXNORM/310965/attributes", json={"result": [
        {"name": "NDC", "value": "00071015523"},
        {"name": "NDC", "value": "00071015568"},
        {"name": "AMBIGUITY_FLAG", "value": "Base"},
    ]})
    requests_mock.get(f"{UTS}/content/current/CUI/C0999999/attributes", json={"result": [
        {"name": "PACKAGE_CODE", "value": "0071-0155-40"},
    ]})

    products = gateway.map_drug_to_product("310965", "C0999999")

    assert [(p.code, p.origin) for p in products] == [
        ("00071015523", "rxnav"),
        ("00071015568", "umls-source-attributes"),
        ("00071015540", "umls-concept-attributes"),
    ]


def test_map_drug_to_product_skips_failing_source(gateway, requests_mock):
    requests_mock.get(f"{RXNAV}/rxcui/310965/ndcs.json", status_code=500)
    requests_mock.get(f"{SOURCE}/RXNORM/310965/attributes", json={"result": [{"name": "NDC", "value": "00071015568"}]})

    products = gateway.map_drug_to_product("310965")

    assert [p.code for p in products] == ["00071015568"]


def test_map_drug_to_product_all_sources_fail(gateway, requests_mock):
    requests_mock.get(f"{RXNAV}/rxcui/310965/ndcs.json", status_code=500)
    requests_mock.get(f"{SOURCE}/RXNORM/310965/attributes", status_code=502)
    with pytest.raises(GatewayError) as exc_info:
        gateway.map_drug_to_product("310965")
    assert exc_info.value.status == 502


# --- HTTP policy ---

def test_retries_transient_failures(requests_mock):
    gateway = UMLSGateway("test_api_key", max_retries=2, retry_backoff=0)
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/1/ancestors", [
        {"status_code": 503},
        {"status_code": 429},
        {"json": _rows("2")},
    ])
    assert [n.source_code for n in gateway.get_ancestors("SNOMEDCT_US", "1")] == ["2"]
    assert requests_mock.call_count == 3


def test_client_error_is_not_retried(requests_mock):
    gateway = UMLSGateway("test_api_key", max_retries=2, retry_backoff=0)
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/1/ancestors", status_code=401, reason="Unauthorized")
    with pytest.raises(GatewayError) as exc_info:
        gateway.get_ancestors("SNOMEDCT_US", "1")
    assert exc_info.value.status == 401
    assert requests_mock.call_count == 1


def test_malformed_json_is_an_error(gateway, requests_mock):
    requests_mock.get(f"{SOURCE}/SNOMEDCT_US/1/ancestors", text="<html>oops</html>")
    with pytest.raises(GatewayError):
        gateway.get_ancestors("SNOMEDCT_US", "1")


def test_map_drug_to_product_normalizes_dashed_codes(gateway, requests_mock):
    """Dashed and undashed spellings of one NDC collapse to the same code, for any drug."""
    requests_mock.get(f"{RXNAV}/rxcui/310965/ndcs.json", json={"ndcGroup": {"ndcList": {"ndc": ["00071015523"]}}})
    requests_mock.get(f"{SOURCE}/RXNORM/310965/attributes", json={"result": [{"name": "NDC", "value": "0071-0155-23"}]})
    requests_mock.get(f"{RXNAV}/rxcui/197806/ndcs.json", json={"ndcGroup": {"ndcList": None}})
    requests_mock.get(f"{SOURCE}/RXNORM/197806/attributes", json={"result": [{"name": "NDC", "value": "0071-0155-23"}]})

    first = gateway.map_drug_to_product("310965")
    second = gateway.map_drug_to_product("197806")

    assert [(p.code, p.origin) for p in first] == [("00071015523", "rxnav")]
    assert [p.code for p in second] == ["00071015523"]
