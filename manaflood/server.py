"""MCP server over a local ManaFlood card database.

Search requests arrive as lists of filters and are compiled through
CardQuery, so the SQL the server runs is the same SQL the CLI shows. Cards,
filter vocabularies and saved decks are exposed read-only. Transport is
stdio via the low-level ``mcp`` Server.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

import mcp.server.stdio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from manaflood import __version__
from manaflood.card_query import CardQuery, QueryError
from manaflood.card_store import VOCABULARY_QUERIES, CardStore
from manaflood.catalog import DomainCatalog
from manaflood.data_manager import DataManager
from manaflood.decks import Deck, DeckError, DeckStore
from manaflood.predicates import Comparison, InclusionMode, Stat

logger = logging.getLogger(__name__)

SERVER_NAME = "manaflood"

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

# search_cards filter category -> CardQuery builder method
FILTER_METHODS = {
    "name": "by_name",
    "text": "by_text",
    "flavor_text": "by_flavor_text",
    "color": "by_color",
    "color_identity": "by_color_identity",
    "supertype": "by_supertype",
    "type": "by_type",
    "subtype": "by_subtype",
    "set": "by_set",
    "block": "by_block",
    "artist": "by_artist",
    "rarity": "by_rarity",
}

_OPERATOR = {"type": "string", "enum": [c.value for c in Comparison]}
_STAT = {"type": "string", "enum": [s.value for s in Stat]}


def _list_of(required: list[str], **fields: dict[str, Any]) -> dict[str, Any]:
    """Schema for an array of objects with the given fields."""
    return {
        "type": "array",
        "items": {"type": "object", "properties": fields, "required": required},
    }


def _arguments(required: list[str] | None = None, **fields: dict[str, Any]) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": fields}
    if required:
        schema["required"] = required
    return schema


SEARCH_SCHEMA = _arguments(
    filters=_list_of(
        ["category", "value"],
        category={"type": "string", "enum": list(FILTER_METHODS)},
        value={"type": "string"},
        mode={
            "type": "string",
            "enum": [m.value for m in InclusionMode],
            "default": InclusionMode.MUST_INCLUDE.value,
        },
    ),
    stats=_list_of(
        ["stat", "operator", "value"],
        stat=_STAT, operator=_OPERATOR, value={"type": "integer"},
    ),
    stat_versus_stat=_list_of(
        ["left", "operator", "right"],
        left=_STAT, operator=_OPERATOR, right=_STAT,
    ),
    mana=_list_of(
        ["symbol", "operator", "quantity"],
        symbol={"type": "string", "description": "Mana symbol such as {U}, {1} or {W/U}"},
        operator=_OPERATOR,
        quantity={"type": "integer"},
    ),
    limit={
        "type": "integer",
        "description": f"Page size, {DEFAULT_LIMIT} unless given, at most {MAX_LIMIT}",
        "default": DEFAULT_LIMIT,
        "minimum": 1,
        "maximum": MAX_LIMIT,
    },
    offset={
        "type": "integer",
        "description": "Printings to skip before the page starts",
        "default": 0,
        "minimum": 0,
    },
    include_sql={
        "type": "boolean",
        "description": "Also return the SQL the filters compiled to",
        "default": False,
    },
)

TOOLS = [
    types.Tool(
        name="search_cards",
        description=(
            "Search Magic: The Gathering printings with structured filters. "
            "Each filter has a category, a value and a mode: must_include (value required), "
            "disallow (value forbidden) or one_of (at least one one_of value per category). "
            "Numeric filters compare stats, two stats, or mana symbol counts."
        ),
        inputSchema=SEARCH_SCHEMA,
    ),
    types.Tool(
        name="get_card",
        description="Look up one card by its exact name, with printings, stats and related faces.",
        inputSchema=_arguments(
            ["name"], name={"type": "string", "description": "Full card name, e.g. 'Air Elemental'"}
        ),
    ),
    types.Tool(
        name="list_vocabulary",
        description="List the legal values of a filter vocabulary (colors, types, sets, ...).",
        inputSchema=_arguments(
            ["vocabulary"], vocabulary={"type": "string", "enum": list(VOCABULARY_QUERIES)}
        ),
    ),
    types.Tool(
        name="list_decks",
        description="List saved decks as id and name.",
        inputSchema=_arguments(),
    ),
    types.Tool(
        name="get_deck",
        description="Get a saved deck with its full history of instances.",
        inputSchema=_arguments(["deck_id"], deck_id={"type": "integer"}),
    ),
    types.Tool(
        name="data_status",
        description=(
            "Report what the local database holds: card and printing counts, "
            "the MTGJSON build it came from and whether a newer build exists."
        ),
        inputSchema=_arguments(),
    ),
]


def deck_to_dict(deck: Deck) -> dict[str, Any]:
    return {
        "id": deck.deck_id,
        "name": deck.name,
        "description": deck.description,
        "history": [
            {
                "creation": instance.creation.isoformat(),
                "categories": {name: sorted(cards) for name, cards in instance.categories.items()},
                "printings": [
                    {
                        "card_name": printing.card_name,
                        "set": printing.expansion,
                        "number": printing.number,
                        "quantity": quantity,
                    }
                    for printing, quantity in instance.quantities.items()
                ],
            }
            for instance in deck.history
        ],
    }


def _clamp(value: Any, low: int, high: int | None, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        value = fallback
    value = max(low, value)
    return value if high is None else min(value, high)


class ManaFloodServer:
    """Tool handlers bound to one data directory.

    The card store and the domain catalog are opened lazily on the first
    call that needs them. Every handler returns a JSON-ready dict; failures
    come back as ``{"error": ..., "hint": ...}`` rather than as exceptions.
    """

    name = SERVER_NAME
    version = __version__

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.db_path = data_dir / "cards.db"

        self._store: CardStore | None = None
        self._catalog: DomainCatalog | None = None
        self._data_manager = DataManager(data_dir)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "search_cards": self._search_cards,
            "get_card": self._get_card,
            "list_vocabulary": self._list_vocabulary,
            "list_decks": self._list_decks,
            "get_deck": self._get_deck,
            "data_status": self._data_status,
        }

    def __enter__(self) -> "ManaFloodServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def __aenter__(self) -> "ManaFloodServer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()

    def close(self) -> None:
        """Close the database connection if one is open."""
        store, self._store = self._store, None
        if store is not None:
            store.close()

    async def cleanup(self) -> None:
        """Close the database and the data manager's HTTP client."""
        self.close()
        await self._data_manager.close()

    def _get_store(self) -> CardStore:
        if self._store is None:
            logger.debug("Opening card database %s", self.db_path)
            self._store = CardStore(self.db_path)
        return self._store

    def _get_catalog(self) -> DomainCatalog:
        if self._catalog is None:
            self._catalog = DomainCatalog.load(self._get_store())
        return self._catalog

    def _init_db(self, sets: list[dict[str, Any]]) -> None:
        """Load MTGJSON set objects straight into the store (used by tests)."""
        store = self._get_store()
        for set_data in sets:
            store.insert_set(set_data)
        self._catalog = None

    def list_tools(self) -> list[types.Tool]:
        return list(TOOLS)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run the named tool; unknown names produce an error result."""
        handler = self._handlers.get(name)
        if handler is None:
            return {"error": f"Unknown tool: {name}"}
        return await handler(arguments)

    def build_query(self, arguments: dict[str, Any]) -> CardQuery:
        """Translate search_cards arguments into a CardQuery.

        Raises:
            QueryError: If any filter is invalid
        """
        query = CardQuery(self._get_catalog())

        for entry in arguments.get("filters", []):
            category = entry.get("category")
            if category not in FILTER_METHODS:
                raise QueryError(
                    f"Unknown filter category: {category!r}",
                    hint="Valid categories: " + ", ".join(FILTER_METHODS),
                )
            add = getattr(query, FILTER_METHODS[category])
            add(entry.get("value"), entry.get("mode", InclusionMode.MUST_INCLUDE.value))

        for entry in arguments.get("stats", []):
            query.by_stat(entry.get("stat"), entry.get("operator"), entry.get("value"))
        for entry in arguments.get("stat_versus_stat", []):
            query.by_stat_versus_stat(entry.get("left"), entry.get("operator"), entry.get("right"))
        for entry in arguments.get("mana", []):
            query.by_mana_type(entry.get("symbol"), entry.get("operator"), entry.get("quantity"))
        return query

    async def _search_cards(self, arguments: dict[str, Any]) -> dict[str, Any]:
        limit = _clamp(arguments.get("limit"), 1, MAX_LIMIT, DEFAULT_LIMIT)
        offset = _clamp(arguments.get("offset"), 0, None, 0)
        started = time.perf_counter()

        try:
            query = self.build_query(arguments)
        except QueryError as e:
            return {"error": e.message, "hint": e.hint}

        store = self._get_store()
        page = store.search_printings(query, limit=limit, offset=offset)
        result: dict[str, Any] = {
            "printings": page,
            "total_count": store.count_matches(query),
            "query_time_ms": int((time.perf_counter() - started) * 1000),
            "offset": offset,
        }
        if arguments.get("include_sql"):
            result["sql"] = query.as_query()
        return result

    async def _get_card(self, arguments: dict[str, Any]) -> dict[str, Any]:
        name = arguments.get("name")
        if not name:
            return {"error": "'name' must be provided"}

        card = self._get_store().get_card(name)
        if card is None:
            return {
                "error": "Card not found",
                "hint": "Try search_cards with a name filter on one word of the card name",
            }
        return card

    async def _list_vocabulary(self, arguments: dict[str, Any]) -> dict[str, Any]:
        vocabulary = arguments.get("vocabulary")
        if vocabulary not in VOCABULARY_QUERIES:
            return {
                "error": f"Unknown vocabulary: {vocabulary}",
                "hint": "Valid vocabularies: " + ", ".join(VOCABULARY_QUERIES),
            }
        return {
            "vocabulary": vocabulary,
            "values": sorted(self._get_store().load_vocabulary(vocabulary)),
        }

    async def _list_decks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        decks = DeckStore(self._get_store()).get_decks()
        return {"decks": [{"id": deck_id, "name": name} for deck_id, name in decks.items()]}

    async def _get_deck(self, arguments: dict[str, Any]) -> dict[str, Any]:
        deck_id = arguments.get("deck_id")
        if isinstance(deck_id, bool) or not isinstance(deck_id, int):
            return {"error": "'deck_id' must be an integer"}
        try:
            deck = DeckStore(self._get_store()).get_deck(deck_id)
        except DeckError as e:
            return {"error": str(e)}
        return deck_to_dict(deck)

    async def _data_status(self, arguments: dict[str, Any]) -> dict[str, Any]:
        store = self._get_store()
        report = (await self._data_manager.get_status()).to_dict()
        report["card_count"] = store.get_card_count()
        report["printing_count"] = store.get_printing_count()
        return report


def create_server(data_dir: Path) -> tuple[Server, ManaFloodServer]:
    """Wire a ManaFloodServer into a low-level MCP Server.

    Returns:
        The MCP Server and the ManaFloodServer, which the caller must clean up
    """
    manaflood = ManaFloodServer(data_dir)
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return manaflood.list_tools()

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        result = await manaflood.call_tool(name, arguments or {})
        return [types.TextContent(type="text", text=json.dumps(result, default=str))]

    return server, manaflood


async def run_server(data_dir: Path | None = None) -> None:
    """Serve over stdio until the client disconnects.

    ``data_dir`` defaults to ``data/`` beside the package.
    """
    if data_dir is None:
        data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(parents=True, exist_ok=True)

    server, manaflood = create_server(data_dir)
    options = InitializationOptions(
        server_name=SERVER_NAME,
        server_version=__version__,
        capabilities=server.get_capabilities(
            notification_options=NotificationOptions(),
            experimental_capabilities={},
        ),
    )
    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, options)
    finally:
        await manaflood.cleanup()


def main() -> None:
    """Entry point for the manaflood-server script."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
