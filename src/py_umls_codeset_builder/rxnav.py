# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Client for the RxNav drug-relation service. No credential is required.
"""
from typing import Any, Dict, List, Sequence

from rich.console import Console

from .http_client import JSONClient

console = Console()

# Clinical drug, branded drug and their components. Packs (BPCK/GPCK),
# drug groups (SCDG/SBDG) and drug forms (SCDF/SBDF) are left out.
RELATED_DRUG_TERM_TYPES = ("SCD", "SBD", "SCDC", "SBDC")


class RxNavClient:
    """
    Wraps the two RxNav operations a build needs: related concepts of an
    RxCUI and the NDC product codes of an RxCUI.
    """
    DEFAULT_BASE_URL = "https://rxnav.nlm.nih.gov/REST"

    def __init__(self, http: JSONClient, base_url: str = DEFAULT_BASE_URL):
        self.http = http
        self.base_url = base_url.rstrip("/")

    def get_related_concepts(
        self, rxcui: str, term_types: Sequence[str] = RELATED_DRUG_TERM_TYPES
    ) -> List[Dict[str, Any]]:
        """
        Returns the conceptProperties rows of every concept group, e.g.
        {"rxcui": "596926", "name": "duloxetine 20 MG ...", "tty": "SCD"}.
        """
        url = f"{self.base_url}/rxcui/{rxcui}/related.json"
        data = self.http.get_json(url, params={"tty": " ".join(term_types)})
        if not data:
            return []

        concepts = []
        for group in (data.get("relatedGroup") or {}).get("conceptGroup") or []:
            for concept in group.get("conceptProperties") or []:
                if concept.get("rxcui"):
                    concepts.append(concept)
        return concepts

    def get_ndcs(self, rxcui: str) -> List[str]:
        """Returns the NDCs RxNav lists for an RxCUI, in the order received."""
        url = f"{self.base_url}/rxcui/{rxcui}/ndcs.json"
        data = self.http.get_json(url)
        ndc_group = (data or {}).get("ndcGroup")
        if not ndc_group:
            console.log(f"No NDC codes found for RXCUI {rxcui}")
            return []

        ndc_list = ndc_group.get("ndcList")
        # Usual shape is {"ndcList": {"ndc": [...]}}; a bare list or a single
        # string are accepted as well.
        if isinstance(ndc_list, dict):
            ndc_list = ndc_list.get("ndc")
        if ndc_list is None:
            return []
        if isinstance(ndc_list, str):
            ndc_list = [ndc_list]
        return [str(ndc) for ndc in ndc_list if ndc]
