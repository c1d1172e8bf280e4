# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import csv
import io
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from rich.console import Console

from .domain_classifier import umls_to_vocabulary_id
from .models import BuildResult, CodeRecord

console = Console()

MIN_FILTER_LENGTH = 3


def filter_codes(
    codes: Iterable[CodeRecord],
    text: Optional[str] = None,
    vocabularies: Optional[Sequence[str]] = None,
) -> List[CodeRecord]:
    """
    Keeps records whose concept id, code, term or vocabulary contains `text`
    (case-insensitive) and whose vocabulary is in `vocabularies`. A filter
    text shorter than three characters is ignored.
    """
    needle = (text or "").strip().lower()
    if len(needle) < MIN_FILTER_LENGTH:
        needle = ""
    allowed = set(vocabularies) if vocabularies else None

    filtered = []
    for record in codes:
        if allowed is not None and record.vocabulary not in allowed:
            continue
        if needle and not any(
            needle in field.lower()
            for field in (record.concept_id, record.code, record.term, record.vocabulary)
        ):
            continue
        filtered.append(record)
    return filtered


def sort_codes(codes: Iterable[CodeRecord]) -> List[CodeRecord]:
    return sorted(codes, key=lambda r: (r.vocabulary, r.code))


def to_tsv(codes: Iterable[CodeRecord], use_vocabulary_ids: bool = False) -> str:
    """One `vocabulary<TAB>code` line per record."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter="\t", lineterminator="\n")
    for record in codes:
        vocabulary = umls_to_vocabulary_id(record.vocabulary) if use_vocabulary_ids else record.vocabulary
        writer.writerow([vocabulary, record.code])
    return buffer.getvalue()


def export_filename(result: BuildResult) -> str:
    stem = result.root_concept_id or f"{result.source_vocabulary}_{result.root_node.source_code}"
    return f"{stem}.txt"


def export_code_set(
    result: BuildResult,
    output_dir: str,
    text: Optional[str] = None,
    vocabularies: Optional[Sequence[str]] = None,
    use_vocabulary_ids: bool = False,
) -> Tuple[Path, int]:
    """Filters, sorts and writes a build result; returns the path and the number of codes written."""
    codes = sort_codes(filter_codes(result.codes, text, vocabularies))
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    file_path = output_path / export_filename(result)
    file_path.write_text(to_tsv(codes, use_vocabulary_ids), encoding="utf-8")
    console.log(f"[green]Exported {len(codes)} codes to {file_path}[/green]")
    return file_path, len(codes)
