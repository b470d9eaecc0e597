"""
Rarity and name normalization.

Source sites label rarities in their own vocabulary ("Super Rare",
"super-rare", "SR", "Peu Commune") and one upstream site concatenates
multi-word names ("Monkeydluffy"). Both are fixed with static tables kept
in data/ so they can be updated without touching the pipeline.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from collectorverse.config import DATA_DIR

logger = logging.getLogger(__name__)

RARITIES_PATH = DATA_DIR / "rarities.json"
NAME_CORRECTIONS_PATH = DATA_DIR / "name_corrections.json"

_FOLD_PATTERN = re.compile(r"[\s_\-]+")


def fold_rarity_key(raw: str) -> str:
    """Lowercase, trim, and collapse '-', '_' and whitespace runs to one space."""
    return _FOLD_PATTERN.sub(" ", raw.strip().lower()).strip()


class RarityNormalizer:
    """Per-TCG rarity alias lookup."""

    def __init__(self, aliases: dict[str, dict[str, str]]):
        self._aliases = {
            tcg: {fold_rarity_key(k): v for k, v in table.items()} for tcg, table in aliases.items()
        }

    def normalize(self, raw: str | None, tcg: str) -> str | None:
        """
        Map a source rarity label to the catalog's canonical value.

        Unknown labels, and labels for TCGs with no table, are returned unchanged.
        """
        if raw is None:
            return None
        table = self._aliases.get(tcg, {})
        canonical = table.get(fold_rarity_key(raw))
        if canonical is None:
            logger.debug("Unknown %s rarity %r; keeping as-is", tcg, raw)
            return raw
        return canonical

    def known_tcgs(self) -> list[str]:
        return sorted(self._aliases)


@dataclass(frozen=True)
class NameCorrection:
    """One find/replace rule. `find` is a literal substring unless `regex` is set."""

    find: str
    replace: str
    regex: bool = False

    def compile(self) -> re.Pattern[str]:
        source = self.find if self.regex else re.escape(self.find)
        return re.compile(source, re.IGNORECASE)


class NameCorrector:
    """
    Ordered find/replace corrections for known name defects.

    Rules are applied in file order; some rules are substrings of others.
    """

    def __init__(self, corrections: dict[str, list[NameCorrection]]):
        self._rules = {
            tcg: [(rule.compile(), rule.replace) for rule in rules]
            for tcg, rules in corrections.items()
        }

    def correct(self, name: str, tcg: str) -> str:
        for pattern, replacement in self._rules.get(tcg, []):
            name = pattern.sub(replacement, name)
        return name.strip()


@dataclass
class NormalizerTables:
    """Both normalization tables, loaded together."""

    rarities: RarityNormalizer
    names: NameCorrector
    sources: dict[str, Path] = field(default_factory=dict)

    def normalize_rarity(self, raw: str | None, tcg: str) -> str | None:
        return self.rarities.normalize(raw, tcg)

    def correct_name(self, name: str, tcg: str) -> str:
        return self.names.correct(name, tcg)


def _read_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_normalizer_tables(
    rarities_path: Path | None = None,
    corrections_path: Path | None = None,
) -> NormalizerTables:
    """
    Build normalizer tables from JSON files.

    Raises:
        FileNotFoundError: If either table is missing
    """
    rarities_path = rarities_path or RARITIES_PATH
    corrections_path = corrections_path or NAME_CORRECTIONS_PATH

    aliases: dict[str, dict[str, str]] = _read_json(rarities_path)
    raw_corrections: dict[str, list[dict[str, Any]]] = _read_json(corrections_path)
    corrections = {
        tcg: [NameCorrection(**rule) for rule in rules] for tcg, rules in raw_corrections.items()
    }

    return NormalizerTables(
        rarities=RarityNormalizer(aliases),
        names=NameCorrector(corrections),
        sources={"rarities": rarities_path, "name_corrections": corrections_path},
    )


@lru_cache(maxsize=1)
def default_tables() -> NormalizerTables:
    """Tables shipped with the package, loaded once per process."""
    return load_normalizer_tables()


def normalize_rarity(raw: str | None, tcg: str = "onepiece") -> str | None:
    """Normalize a rarity label with the packaged tables."""
    return default_tables().normalize_rarity(raw, tcg)


def correct_name(name: str, tcg: str = "onepiece") -> str:
    """Apply the packaged name corrections for a TCG."""
    return default_tables().correct_name(name, tcg)
