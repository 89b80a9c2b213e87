"""Blocking file work for bulk exports: unzip the archive and turn its CSV into JSON."""

from __future__ import annotations

import csv
import json
import logging
import zipfile
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)

HEADER_SEPARATOR = "->"


class BulkFileError(Exception):
    """Raised when an archive or its CSV cannot be processed."""


def extract_csv(archive: Path, target_dir: Path, expected_name: str) -> Path:
    """Unzip ``archive`` into ``target_dir`` and return the report CSV.

    When ``expected_name`` is absent but the archive holds exactly one CSV,
    that file is used instead.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive) as bundle:
            members = bundle.namelist()
            bundle.extractall(target_dir)
    except zipfile.BadZipFile as exc:
        raise BulkFileError(f"Invalid bulk archive {archive.name}: {exc}") from exc

    expected = target_dir / expected_name
    if expected.is_file():
        return expected

    csv_members = [name for name in members if name.lower().endswith(".csv")]
    if len(csv_members) == 1:
        fallback = target_dir / csv_members[0]
        logger.warning(
            "Expected %s in %s, using %s instead", expected_name, archive.name, csv_members[0]
        )
        return fallback

    raise BulkFileError(
        f"CSV {expected_name} not found in {archive.name} (found: {', '.join(members) or 'nothing'})."
    )


def rename_header(name: str) -> str:
    return name.replace(".", HEADER_SEPARATOR)


def csv_to_records(csv_path: Path) -> List[Dict[str, str]]:
    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle)
        try:
            header = next(reader)
        except StopIteration:
            return []
        keys = [rename_header(column) for column in header]
        return [dict(zip(keys, row)) for row in reader if row]


def write_json(records: List[Dict[str, str]], destination: Path) -> Path:
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8") as handle:
        json.dump(records, handle, ensure_ascii=False)
    return destination


def transform_csv(csv_path: Path, destination: Path) -> int:
    """Write the CSV rows as a JSON array; returns the number of records."""
    records = csv_to_records(csv_path)
    write_json(records, destination)
    return len(records)


__all__ = [
    "BulkFileError",
    "csv_to_records",
    "extract_csv",
    "rename_header",
    "transform_csv",
    "write_json",
]
