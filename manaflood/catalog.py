"""Domain catalog: the legal values of each enumerated vocabulary."""

import logging
from typing import Iterable, Mapping, Protocol

logger = logging.getLogger(__name__)

COLORS = "colors"
SUPERTYPES = "supertypes"
TYPES = "types"
SUBTYPES = "subtypes"
RARITIES = "rarities"
MANA_TYPES = "mana_types"
BLOCKS = "blocks"
ARTISTS = "artists"
SETS = "sets"

VOCABULARIES = (COLORS, SUPERTYPES, TYPES, SUBTYPES, RARITIES, MANA_TYPES, BLOCKS, ARTISTS, SETS)


class CatalogLoadError(RuntimeError):
    """A vocabulary could not be loaded; the catalog is unusable."""

    def __init__(self, vocabulary: str, cause: Exception):
        super().__init__(f"Failed to load vocabulary '{vocabulary}': {cause}")
        self.vocabulary = vocabulary


class VocabularySource(Protocol):
    """What the catalog needs from storage."""

    def load_vocabulary(self, name: str) -> Iterable[str]: ...

    def load_block_expansions(self) -> Mapping[str, Iterable[str]]: ...


class DomainCatalog:
    """Read-only vocabularies loaded once from storage.

    Construct with ``DomainCatalog.load(store)``, or directly from
    in-memory sets (useful in tests).
    """

    def __init__(
        self,
        vocabularies: Mapping[str, Iterable[str]],
        block_expansions: Mapping[str, Iterable[str]] | None = None,
    ):
        missing = [name for name in VOCABULARIES if name not in vocabularies]
        if missing:
            raise CatalogLoadError(missing[0], KeyError(missing[0]))
        self._vocabularies = {
            name: frozenset(values) for name, values in vocabularies.items()
        }
        self._block_expansions = {
            block: frozenset(sets) for block, sets in (block_expansions or {}).items()
        }

    @classmethod
    def load(cls, source: VocabularySource) -> "DomainCatalog":
        """Load every vocabulary from ``source``.

        Raises:
            CatalogLoadError: If any vocabulary (or the block map) fails to load
        """
        vocabularies = {}
        for name in VOCABULARIES:
            try:
                vocabularies[name] = set(source.load_vocabulary(name))
            except Exception as e:
                raise CatalogLoadError(name, e) from e
            logger.debug("Loaded vocabulary %s (%d values)", name, len(vocabularies[name]))

        try:
            block_expansions = {
                block: set(sets) for block, sets in source.load_block_expansions().items()
            }
        except Exception as e:
            raise CatalogLoadError(BLOCKS, e) from e

        return cls(vocabularies, block_expansions)

    def contains(self, vocabulary: str, value: str) -> bool:
        """Check whether ``value`` is a legal member of ``vocabulary``.

        Raises:
            KeyError: If ``vocabulary`` is not a known vocabulary name
        """
        return value in self._vocabularies[vocabulary]

    def values(self, vocabulary: str) -> frozenset[str]:
        return self._vocabularies[vocabulary]

    @property
    def block_expansions(self) -> Mapping[str, frozenset[str]]:
        """Block name -> names of the sets in that block."""
        return self._block_expansions
