"""CLI for downloading, importing and searching MTGJSON card data."""

import argparse
import asyncio
import re
import sys
from pathlib import Path

from manaflood.card_query import CardQuery, QueryError
from manaflood.card_store import CardStore
from manaflood.catalog import DomainCatalog
from manaflood.data_manager import DEFAULT_FILE, DataManager
from manaflood.decks import DeckStore
from manaflood.import_utils import import_all_printings, import_set_file
from manaflood.predicates import InclusionMode

DB_NAME = "cards.db"

# Flag stem -> CardQuery method; each gets --X, --not-X and --any-X
SEARCH_FILTERS = [
    ("name", "by_name"),
    ("text", "by_text"),
    ("flavor", "by_flavor_text"),
    ("color", "by_color"),
    ("identity", "by_color_identity"),
    ("supertype", "by_supertype"),
    ("type", "by_type"),
    ("subtype", "by_subtype"),
    ("set", "by_set"),
    ("block", "by_block"),
    ("artist", "by_artist"),
    ("rarity", "by_rarity"),
]

_MODE_PREFIXES = [
    ("", InclusionMode.MUST_INCLUDE),
    ("not-", InclusionMode.DISALLOW),
    ("any-", InclusionMode.ONE_OF),
]

_COMPARISON = re.compile(r"^\s*([^<>=!\s]+)\s*(!=|>=|<=|=|<|>)\s*(\S+)\s*$")


def format_size(bytes_size: float) -> str:
    """Render a byte count with a binary unit, e.g. 1536 -> "1.5 KB"."""
    size = float(bytes_size)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            break
        size /= 1024
    else:
        unit = "TB"
    return f"{size:.1f} {unit}"


def print_progress_bar(downloaded: int, total: int, width: int = 40) -> None:
    """Redraw a one-line download bar; usable as a download progress_callback.

    Nothing is drawn when the server sent no Content-Length.
    """
    if not total:
        return
    fraction = downloaded / total
    done = int(width * fraction)
    bar = "█" * done + "░" * (width - done)
    sys.stdout.write(
        f"\r  [{bar}] {fraction * 100:.1f}% ({format_size(downloaded)} / {format_size(total)})"
    )
    sys.stdout.flush()


def _import_progress(sets: int, printings: int) -> None:
    sys.stdout.write(f"\r  Importing... {sets:,} sets, {printings:,} printings")
    sys.stdout.flush()


def parse_comparison(expression: str) -> tuple[str, str, str]:
    """Split "power>=3" into ("power", ">=", "3").

    Raises:
        QueryError: If the expression isn't ``left OP right``
    """
    match = _COMPARISON.match(expression)
    if not match:
        raise QueryError(
            f"Invalid comparison: {expression!r}",
            hint="Use the form power>3, power>=toughness or {U}>=2",
        )
    return match.group(1), match.group(2), match.group(3)


def _parse_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise QueryError(f"Expected an integer, got {text!r}") from None


def build_query(args: argparse.Namespace, catalog: DomainCatalog) -> CardQuery:
    """Translate parsed search flags into a CardQuery.

    Raises:
        QueryError: If any flag value is invalid
    """
    query = CardQuery(catalog)
    for stem, method in SEARCH_FILTERS:
        for prefix, mode in _MODE_PREFIXES:
            dest = f"{prefix}{stem}".replace("-", "_")
            for value in getattr(args, dest, None) or []:
                getattr(query, method)(value, mode)

    for expression in args.stat or []:
        stat, operator, value = parse_comparison(expression)
        query.by_stat(stat, operator, _parse_int(value))
    for expression in args.stat_vs or []:
        query.by_stat_versus_stat(*parse_comparison(expression))
    for expression in args.mana or []:
        symbol, operator, value = parse_comparison(expression)
        query.by_mana_type(symbol, operator, _parse_int(value))
    return query


def _import_file(json_file: Path, db_path: Path, single_set: bool) -> int:
    with CardStore(db_path) as store:
        if single_set:
            return import_set_file(json_file, store)
        return import_all_printings(json_file, store, _import_progress)


def _newest_data_file(data_dir: Path) -> Path | None:
    candidates = [p for p in data_dir.glob("*.json") if p.name != "metadata.json"]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


async def download_data(data_dir: Path, name: str = DEFAULT_FILE, force: bool = False) -> None:
    """Fetch an MTGJSON file unless the local build is current, then import it."""
    manager = DataManager(data_dir)
    try:
        if not force:
            print("Comparing local data with the published MTGJSON build...")
            if not await manager.is_cache_stale():
                status = await manager.get_status()
                print(f"Data is already up to date ({status.printing_count:,} printings,"
                      f" fetched {status.last_updated}).")
                print("Pass --force to fetch it again.")
                return

        print(f"Fetching {name}.json from MTGJSON")
        file_path = await manager.download_file(name, progress_callback=print_progress_bar)
        print(f"\nSaved {file_path}\n")

        total = _import_file(file_path, data_dir / DB_NAME, single_set=name != DEFAULT_FILE)
        manager.update_printing_count(total)
        print(f"\nImported {total:,} printings.")
    except Exception as e:
        print(f"\nError: {e}")
        raise
    finally:
        await manager.close()


async def show_status(data_dir: Path) -> None:
    """Print the download record and whether a newer build is out."""
    manager = DataManager(data_dir)
    try:
        status = await manager.get_status()
    finally:
        await manager.close()

    rows = [
        ("Last updated", status.last_updated or "Never"),
        ("Printings", f"{status.printing_count:,}"),
        ("Version", status.version or "Unknown"),
        ("Stale", "Yes" if status.is_stale else "No"),
    ]
    print("ManaFlood Data Status")
    print("=" * 40)
    for label, value in rows:
        print(f"  {label + ':':<14}{value}")
    if status.is_stale:
        print("\nRun 'manaflood download' to refresh.")


async def import_data(data_dir: Path, json_file: Path | None = None, single_set: bool = False) -> None:
    """Load an AllPrintings file (or a single set file) into cards.db.

    Without ``json_file`` the most recently modified JSON file in the data
    directory is used.
    """
    if json_file is None:
        json_file = _newest_data_file(data_dir)
        if json_file is None:
            print("Error: No JSON data file found in data directory.")
            print("Run 'manaflood download' first.")
            return
    if not json_file.exists():
        print(f"Error: File not found: {json_file}")
        return

    print(f"Loading {json_file.name} ({format_size(json_file.stat().st_size)})")
    total = _import_file(json_file, data_dir / DB_NAME, single_set)
    print(f"\nImported {total:,} printings.")

    manager = DataManager(data_dir)
    try:
        manager.update_printing_count(total)
    finally:
        await manager.close()


def run_search(data_dir: Path, args: argparse.Namespace) -> int:
    """Run a search and print matching printings.

    Returns:
        Process exit code (0 on success, 2 on invalid filters)
    """
    with CardStore(data_dir / DB_NAME) as store:
        catalog = DomainCatalog.load(store)
        try:
            query = build_query(args, catalog)
        except QueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

        if args.show_sql:
            print(query.as_query())
            print()

        results = store.search_printings(query, limit=args.limit, offset=args.offset)
        total = store.count_matches(query)

    for printing in results:
        print(f"{printing['card_name']}  [{printing['set']} #{printing['number']}, {printing['rarity']}]")
    print()
    print(f"{len(results)} of {total:,} printings shown.")
    return 0


def list_decks(data_dir: Path) -> None:
    with CardStore(data_dir / DB_NAME) as store:
        decks = DeckStore(store).get_decks()
    if not decks:
        print("No decks saved.")
    for deck_id, name in decks.items():
        print(f"  {deck_id:>4}  {name}")


def _bounded_int(low: int):
    def parse(text: str) -> int:
        try:
            value = int(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"expected an integer, got {text!r}") from None
        if value < low:
            raise argparse.ArgumentTypeError(f"must be at least {low}, got {value}")
        return value

    return parse


def _add_search_arguments(search_parser: argparse.ArgumentParser) -> None:
    for stem, method in SEARCH_FILTERS:
        for prefix, mode in _MODE_PREFIXES:
            search_parser.add_argument(
                f"--{prefix}{stem}",
                action="append",
                metavar="VALUE",
                help=f"{method} with {mode.value} (repeatable)",
            )
    search_parser.add_argument(
        "--stat", action="append", metavar="EXPR", help="Stat comparison, e.g. power>3"
    )
    search_parser.add_argument(
        "--stat-vs", action="append", metavar="EXPR", help="Stat versus stat, e.g. power>=toughness"
    )
    search_parser.add_argument(
        "--mana", action="append", metavar="EXPR", help="Mana symbol count, e.g. {U}>=2"
    )
    search_parser.add_argument(
        "--limit", type=_bounded_int(1), default=20, help="Maximum results (default 20)"
    )
    search_parser.add_argument(
        "--offset", type=_bounded_int(0), default=0, help="Results to skip (default 0)"
    )
    search_parser.add_argument("--show-sql", action="store_true", help="Print the compiled SQL")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ManaFlood - Download, import and search MTG card data",
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path("./data"),
        help="Directory for storing data (default: ./data)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    download_parser = subparsers.add_parser("download", help="Download and import MTGJSON data")
    download_parser.add_argument(
        "--file",
        default=DEFAULT_FILE,
        help=f"MTGJSON file: {DEFAULT_FILE} or a set code (default: {DEFAULT_FILE})",
    )
    download_parser.add_argument(
        "--force",
        action="store_true",
        help="Force re-download even if data is current",
    )

    import_parser = subparsers.add_parser("import", help="Import a downloaded JSON file")
    import_parser.add_argument(
        "--file",
        type=Path,
        help="JSON file to import (auto-detects if not specified)",
    )
    import_parser.add_argument(
        "--set",
        action="store_true",
        dest="single_set",
        help="File holds a single set rather than AllPrintings",
    )

    subparsers.add_parser("status", help="Show current data status")

    search_parser = subparsers.add_parser("search", help="Search printings with filters")
    _add_search_arguments(search_parser)

    subparsers.add_parser("decks", help="List saved decks")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    args.data_dir.mkdir(parents=True, exist_ok=True)

    if args.command == "download":
        asyncio.run(download_data(args.data_dir, args.file, args.force))
    elif args.command == "import":
        asyncio.run(import_data(args.data_dir, args.file, args.single_set))
    elif args.command == "status":
        asyncio.run(show_status(args.data_dir))
    elif args.command == "search":
        sys.exit(run_search(args.data_dir, args))
    elif args.command == "decks":
        list_decks(args.data_dir)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
