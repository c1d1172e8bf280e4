# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Extracts a consolidated dose form and a strength from an RxNorm drug name,
e.g. "duloxetine 20 MG Delayed Release Oral Capsule" -> Oral Solid, 20 MG.

RxNorm dose forms are collapsed into a handful of categories that are useful
when reviewing a code set. The phrase table is matched longest phrase first,
so "Vaginal Tablet" wins over "Tablet".
"""
import re
from typing import Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict

ORAL_SOLID = "Oral Solid"
ORAL_LIQUID = "Oral Liquid"
INJECTABLE = "Injectable"
TOPICAL = "Topical"
INHALATION = "Inhalation"
OPHTHALMIC = "Ophthalmic"
OTIC = "Otic"
OTHER = "Other"

DOSE_FORM_CATEGORIES: Dict[str, str] = {
    # Oral solids
    "delayed release oral capsule": ORAL_SOLID,
    "delayed release oral tablet": ORAL_SOLID,
    "extended release oral capsule": ORAL_SOLID,
    "extended release oral tablet": ORAL_SOLID,
    "disintegrating oral tablet": ORAL_SOLID,
    "effervescent oral tablet": ORAL_SOLID,
    "chewable tablet": ORAL_SOLID,
    "sublingual tablet": ORAL_SOLID,
    "buccal tablet": ORAL_SOLID,
    "oral capsule": ORAL_SOLID,
    "oral tablet": ORAL_SOLID,
    "oral lozenge": ORAL_SOLID,
    "oral granules": ORAL_SOLID,
    "oral powder": ORAL_SOLID,
    "oral pellet": ORAL_SOLID,
    "oral film": ORAL_SOLID,
    "tablet": ORAL_SOLID,
    "capsule": ORAL_SOLID,
    "caplet": ORAL_SOLID,
    # Oral liquids
    "extended release suspension": ORAL_LIQUID,
    "oral solution": ORAL_LIQUID,
    "oral suspension": ORAL_LIQUID,
    "oral syrup": ORAL_LIQUID,
    "oral elixir": ORAL_LIQUID,
    "oral emulsion": ORAL_LIQUID,
    "oral liquid": ORAL_LIQUID,
    "oral drops": ORAL_LIQUID,
    # Injectables
    "injectable solution": INJECTABLE,
    "injectable suspension": INJECTABLE,
    "injectable emulsion": INJECTABLE,
    "intravenous solution": INJECTABLE,
    "prefilled syringe": INJECTABLE,
    "pen injector": INJECTABLE,
    "auto-injector": INJECTABLE,
    "cartridge": INJECTABLE,
    "injection": INJECTABLE,
    # Topicals
    "transdermal system": TOPICAL,
    "transdermal patch": TOPICAL,
    "medicated patch": TOPICAL,
    "topical cream": TOPICAL,
    "topical ointment": TOPICAL,
    "topical gel": TOPICAL,
    "topical lotion": TOPICAL,
    "topical solution": TOPICAL,
    "topical foam": TOPICAL,
    "topical spray": TOPICAL,
    "shampoo": TOPICAL,
    "cream": TOPICAL,
    "ointment": TOPICAL,
    "lotion": TOPICAL,
    "gel": TOPICAL,
    # Inhalation
    "metered dose inhaler": INHALATION,
    "dry powder inhaler": INHALATION,
    "inhalation solution": INHALATION,
    "inhalation suspension": INHALATION,
    "inhalation powder": INHALATION,
    "nasal spray": INHALATION,
    "inhalant": INHALATION,
    # Eye
    "ophthalmic solution": OPHTHALMIC,
    "ophthalmic suspension": OPHTHALMIC,
    "ophthalmic ointment": OPHTHALMIC,
    "ophthalmic gel": OPHTHALMIC,
    "eye drops": OPHTHALMIC,
    # Ear
    "otic solution": OTIC,
    "otic suspension": OTIC,
    "ear drops": OTIC,
    # Everything else
    "rectal suppository": OTHER,
    "vaginal suppository": OTHER,
    "vaginal cream": OTHER,
    "vaginal tablet": OTHER,
    "vaginal ring": OTHER,
    "intrauterine system": OTHER,
    "irrigation solution": OTHER,
    "suppository": OTHER,
    "enema": OTHER,
    "implant": OTHER,
}


def _compile_phrases() -> List[Tuple[Pattern, str]]:
    phrases = sorted(DOSE_FORM_CATEGORIES, key=len, reverse=True)
    return [
        (re.compile(r"\b" + re.escape(phrase) + r"\b", re.IGNORECASE), DOSE_FORM_CATEGORIES[phrase])
        for phrase in phrases
    ]


_DOSE_FORM_PATTERNS = _compile_phrases()

# A number followed by a unit: 20 MG, 0.5 MG/ML, 250 MG/5ML, 100 UNT/ML, 2.5 %
STRENGTH_PATTERN = re.compile(
    r"(?<![\w.])(?P<amount>\d+(?:\.\d+)?)\s*"
    r"(?P<unit>(?:MCG|MG|MEQ|MMOL|UNITS?|UNT|G|ML|L)(?:/\d*(?:\.\d+)?\s*(?:ML|L|HR|ACTUAT|MG|G|DAY))?|%)"
    r"(?![A-Za-z])",
    re.IGNORECASE,
)


class DoseFormStrength(BaseModel):
    model_config = ConfigDict(frozen=True)

    dose_form: Optional[str] = None
    strength: Optional[str] = None


def parse_dose_form(drug_name: str) -> Optional[str]:
    for pattern, category in _DOSE_FORM_PATTERNS:
        if pattern.search(drug_name):
            return category
    return None


def parse_strength(drug_name: str) -> Optional[str]:
    match = STRENGTH_PATTERN.search(drug_name)
    if not match:
        return None
    return f"{match.group('amount')} {match.group('unit')}"


def parse_dose_form_and_strength(drug_name: Optional[str]) -> DoseFormStrength:
    """Returns whichever of dose form and strength could be found. Never raises."""
    if not drug_name:
        return DoseFormStrength()
    return DoseFormStrength(dose_form=parse_dose_form(drug_name), strength=parse_strength(drug_name))
