"""Shared utilities for importing MTGJSON set data."""

import logging
from pathlib import Path
from typing import Any, Callable, Iterator

import ijson

from manaflood.card_store import CardStore

logger = logging.getLogger(__name__)

# Set codes whose cards don't fit the schema (silver-bordered and promo oddities)
UNSUPPORTED_SETS = frozenset({"UNH", "UGL", "UST", "PCEL"})


def _sets_in_file(json_file: Path) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield (code, set) pairs from an AllPrintings-style file.

    Accepts both the current layout ({"meta": ..., "data": {code: set}})
    and the older one with sets at the top level.
    """
    found = False
    with open(json_file, "rb") as f:
        for code, set_data in ijson.kvitems(f, "data"):
            found = True
            yield code, set_data
    if found:
        return

    with open(json_file, "rb") as f:
        for code, set_data in ijson.kvitems(f, ""):
            if code == "meta" or not isinstance(set_data, dict):
                continue
            yield code, set_data


def load_set_file(json_file: Path) -> dict[str, Any]:
    """Load a single set file (wrapped in "data" or bare).

    Raises:
        FileNotFoundError: If json_file does not exist
        ValueError: If the file holds no set object
    """
    with open(json_file, "rb") as f:
        for set_data in ijson.items(f, "data"):
            return set_data
    with open(json_file, "rb") as f:
        for set_data in ijson.items(f, ""):
            if isinstance(set_data, dict):
                return set_data
    raise ValueError(f"No set object found in {json_file}")


def import_set_file(json_file: Path, store: CardStore) -> int:
    """Import one set file into the store.

    Args:
        json_file: Path to a single-set JSON file
        store: CardStore instance to import into

    Returns:
        Number of printings added
    """
    return store.insert_set(load_set_file(json_file))


def import_all_printings(
    json_file: Path,
    store: CardStore,
    progress_callback: Callable[[int, int], None] | None = None,
) -> int:
    """Import every supported set from an AllPrintings file.

    Uses ijson to stream one set at a time, so memory stays bounded by the
    largest set rather than the whole file. Each set is inserted in its own
    transaction.

    Note: This function does NOT manage the store lifecycle. The caller is
    responsible for opening and closing the store connection.

    Args:
        json_file: Path to the AllPrintings JSON file
        store: CardStore instance to import into
        progress_callback: Optional callback(sets_imported, printings_added)

    Returns:
        Total number of printings added

    Raises:
        FileNotFoundError: If json_file does not exist
    """
    sets_imported = 0
    printings = 0

    for code, set_data in _sets_in_file(json_file):
        if code.upper() in UNSUPPORTED_SETS or str(set_data.get("code", "")).upper() in UNSUPPORTED_SETS:
            logger.info("Skipping unsupported set %s", code)
            continue
        printings += store.insert_set(set_data)
        sets_imported += 1
        if progress_callback:
            progress_callback(sets_imported, printings)

    return printings
