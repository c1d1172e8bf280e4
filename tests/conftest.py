# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import os

# The CLI builds the global settings object on import and needs a key.
os.environ.setdefault("PYUMLSCODESET_UMLS_API_KEY", "test_api_key")

import pytest

from py_umls_codeset_builder.gateway import UMLSGateway
from py_umls_codeset_builder.models import ProductCode

from .fakes import FakeGateway, atom, node


@pytest.fixture
def gateway():
    """A real gateway with retries disabled, for requests_mock based tests."""
    return UMLSGateway("test_api_key", max_retries=0, retry_backoff=0)


@pytest.fixture
def condition_gateway():
    """
    SNOMEDCT_US:100 with children 101 and 102. Each code maps to its own
    concept, and each concept has a single ICD10CM code.
    """
    return FakeGateway(
        children={
            ("SNOMEDCT_US", "100"): [node("SNOMEDCT_US", "101", "Child one"), node("SNOMEDCT_US", "102", "Child two")],
        },
        source_concepts={
            ("SNOMEDCT_US", "100"): "C0000100",
            ("SNOMEDCT_US", "101"): "C0000101",
            ("SNOMEDCT_US", "102"): "C0000102",
        },
        concepts={"C0000100": "Migraine", "C0000101": "Migraine with aura", "C0000102": "Migraine without aura"},
        concept_atoms={
            "C0000100": [atom("ICD10CM", "G43", "Migraine")],
            "C0000101": [atom("ICD10CM", "G43.1", "Migraine with aura")],
            "C0000102": [atom("ICD10CM", "G43.0", "Migraine without aura")],
        },
    )


@pytest.fixture
def drug_gateway():
    """RXNORM ingredient 5640 with one clinical drug 1000 that has one NDC."""
    return FakeGateway(
        children={("RXNORM", "5640"): [node("RXNORM", "1000", "ibuprofen 200 MG Oral Tablet")]},
        source_concepts={("RXNORM", "5640"): "C0020740", ("RXNORM", "1000"): "C0999999"},
        concepts={"C0020740": "Ibuprofen", "C0999999": "Ibuprofen 200 MG Oral Tablet"},
        concept_atoms={
            "C0020740": [atom("RXNORM", "5640", "ibuprofen", term_type="IN")],
            "C0999999": [atom("RXNORM", "1000", "ibuprofen 200 MG Oral Tablet", term_type="SCD")],
        },
        products={"1000": [ProductCode(code="00071015523", name="NDC 00071015523", origin="rxnav")]},
    )
