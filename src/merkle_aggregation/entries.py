"""CSV entry loading.

Files have a header row and two semicolon-separated columns::

    username;balances
    dxGaEAii;11888,41163
    MBlfbBGI;67823,18651

Balances are comma-separated non-negative decimal integers, one per asset.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable

from merkle_aggregation.exceptions import EntryValidationError
from merkle_aggregation.models import Entry

logger = logging.getLogger(__name__)

_REQUIRED_COLUMNS = ("username", "balances")


def parse_entry_rows(rows: Iterable[dict], source: str = "<rows>") -> list[Entry]:
    """Convert ``{"username", "balances"}`` rows into entries."""
    entries: list[Entry] = []
    # Line 1 is the header.
    for line, row in enumerate(rows, start=2):
        username = (row.get("username") or "").strip()
        raw = (row.get("balances") or "").strip()
        if not username or not raw:
            raise EntryValidationError(f"{source}:{line}: missing username or balances")
        balances = [part.strip() for part in raw.split(",")]
        if not all(b.isascii() and b.isdigit() for b in balances):
            raise EntryValidationError(
                f"{source}:{line}: balances must be non-negative integers, got {raw!r}"
            )
        entries.append(Entry.from_strings(username, balances))
    return entries


def load_entries(path: str | Path) -> list[Entry]:
    """Load entries from a semicolon-delimited CSV file.

    Raises:
        EntryValidationError: If the file is missing columns or holds an
            invalid row.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh, delimiter=";")
        missing = [c for c in _REQUIRED_COLUMNS if c not in (reader.fieldnames or ())]
        if missing:
            raise EntryValidationError(
                f"{path}: missing column(s) {', '.join(missing)}"
            )
        entries = parse_entry_rows(reader, source=str(path))
    logger.debug("Loaded %d entries from %s", len(entries), path)
    return entries
