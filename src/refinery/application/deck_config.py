"""
Deck to algorithm mapping, loaded from the master YAML config.

The master config keeps the layout of the reading-notes tool it came from:

    phlower:
      decks:
        - cfgId: books
          algorithm: standard
      algorithms:
        - cfgId: standard
          new: {...}
          fail: {...}
          rev: {...}

Other top-level sections (refinery, ibooks, anki, formatting) are ignored here.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from refinery.domain.errors import InvalidConfig
from refinery.domain.scheduling.config import AlgorithmConfig

logger = logging.getLogger(__name__)


class DeckRegistry:
    """
    Validated lookup from deck id to its AlgorithmConfig.

    Built once by the caller and passed to the services that need it.
    """

    def __init__(self, algorithms: Mapping[str, AlgorithmConfig], decks: Mapping[str, str]):
        """
        Args:
            algorithms: Algorithm id -> config.
            decks: Deck id -> algorithm id.
        """
        for deck_id, algorithm_id in decks.items():
            if algorithm_id not in algorithms:
                raise InvalidConfig(
                    f"Deck '{deck_id}' references unknown algorithm '{algorithm_id}'"
                )
        self._algorithms = dict(algorithms)
        self._decks = dict(decks)

    @classmethod
    def single(cls, deck_id: str, config: AlgorithmConfig) -> "DeckRegistry":
        return cls({config.cfg_id: config}, {deck_id: config.cfg_id})

    @classmethod
    def from_master_config(cls, data: Mapping[str, Any]) -> "DeckRegistry":
        phlower = data.get("phlower") if isinstance(data, Mapping) else None
        if not isinstance(phlower, Mapping):
            raise InvalidConfig("Master config is missing the 'phlower' section")

        algorithms: dict[str, AlgorithmConfig] = {}
        for entry in _entries(phlower, "algorithms"):
            cfg_id = _cfg_id(entry, "algorithms")
            if cfg_id in algorithms:
                raise InvalidConfig(f"Duplicate algorithm id '{cfg_id}'")
            algorithms[cfg_id] = AlgorithmConfig.from_dict(entry)

        decks: dict[str, str] = {}
        for entry in _entries(phlower, "decks"):
            cfg_id = _cfg_id(entry, "decks")
            if cfg_id in decks:
                raise InvalidConfig(f"Duplicate deck id '{cfg_id}'")
            algorithm = entry.get("algorithm")
            if not isinstance(algorithm, str):
                raise InvalidConfig(f"Deck '{cfg_id}' has no algorithm")
            decks[cfg_id] = algorithm

        logger.debug(f"Loaded {len(algorithms)} algorithms for {len(decks)} decks")
        return cls(algorithms, decks)

    @property
    def deck_ids(self) -> list[str]:
        return sorted(self._decks)

    @property
    def algorithms(self) -> dict[str, AlgorithmConfig]:
        return dict(self._algorithms)

    def algorithm_for(self, deck_id: str) -> AlgorithmConfig:
        try:
            return self._algorithms[self._decks[deck_id]]
        except KeyError:
            raise InvalidConfig(f"Unknown deck '{deck_id}'") from None


def load_master_config(path: Path) -> dict[str, Any]:
    """Read the master YAML config. Raises InvalidConfig if missing or malformed."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidConfig(f"Cannot read config file {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidConfig(f"Malformed YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfig(f"Config file {path} must contain a mapping")
    return data


def load_deck_registry(path: Path) -> DeckRegistry:
    return DeckRegistry.from_master_config(load_master_config(path))


def _entries(section: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    entries = section.get(key) or []
    if not isinstance(entries, list) or not all(isinstance(e, Mapping) for e in entries):
        raise InvalidConfig(f"phlower.{key} must be a list of mappings")
    return entries


def _cfg_id(entry: Mapping[str, Any], key: str) -> str:
    cfg_id = entry.get("cfgId")
    if not isinstance(cfg_id, str) or not cfg_id:
        raise InvalidConfig(f"Every phlower.{key} entry needs a cfgId")
    return cfg_id
