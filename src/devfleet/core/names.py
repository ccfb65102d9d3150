"""Deterministic human-readable server names.

Unnamed servers get an adjective-noun name derived from their command and
environment, so repeating the same start in the same directory resolves to
the same registry entry. Any change to command or env yields a different
name and therefore a different server.
"""

from __future__ import annotations

__all__ = [
    "disambiguate_name",
    "generate_deterministic_name",
    "normalize_for_hash",
]

import json
import re
from typing import Mapping

from devfleet.core.ports import fnv1a_32

_WHITESPACE_RE = re.compile(r"\s+")

_ADJECTIVES: tuple[str, ...] = (
    "able", "amber", "ancient", "azure", "bold", "brave", "brisk", "bright",
    "calm", "clever", "cosmic", "crimson", "crisp", "curious", "daring", "dapper",
    "eager", "early", "electric", "emerald", "fancy", "fast", "fierce", "fluffy",
    "gentle", "giant", "golden", "happy", "hidden", "humble", "icy", "jolly",
    "keen", "kind", "lively", "lucky", "lunar", "mellow", "merry", "mighty",
    "misty", "modest", "noble", "nimble", "odd", "olive", "proud", "quick",
    "quiet", "rapid", "rustic", "scarlet", "shiny", "silent", "silver", "sleepy",
    "smooth", "snowy", "solar", "spicy", "steady", "sunny", "swift", "tidy",
    "tiny", "tranquil", "vast", "velvet", "vivid", "warm", "wild", "wise",
    "witty", "young", "zany", "zealous", "breezy", "dusty", "frosty", "rosy",
)

_NOUNS: tuple[str, ...] = (
    "badger", "bear", "beacon", "bison", "canyon", "cedar", "cloud", "comet",
    "coral", "crane", "creek", "dolphin", "dragon", "eagle", "ember", "falcon",
    "fern", "finch", "forest", "fox", "galaxy", "gecko", "glacier", "harbor",
    "hawk", "heron", "island", "jaguar", "koala", "lake", "lantern", "lark",
    "lemur", "lion", "lotus", "lynx", "maple", "meadow", "meteor", "moose",
    "moth", "nebula", "otter", "owl", "panda", "panther", "pebble", "pine",
    "planet", "puffin", "quail", "rabbit", "raven", "reef", "river", "robin",
    "salmon", "sparrow", "spruce", "squid", "star", "stone", "summit", "swan",
    "tiger", "toucan", "tundra", "turtle", "valley", "walrus", "whale", "willow",
    "wolf", "wombat", "yak", "zebra", "orchid", "pelican", "breeze", "harvest",
)


def normalize_for_hash(command: str, env: Mapping[str, str] | None = None) -> str:
    """Canonical string for a (command, env) pair.

    Whitespace runs collapse to one space and env keys are sorted, so
    cosmetic differences do not change identity. None env equals {}.
    """
    normalized_command = _WHITESPACE_RE.sub(" ", command).strip()
    env_items = sorted((env or {}).items())
    if not env_items:
        return normalized_command
    return f"{normalized_command}\n{json.dumps(env_items, separators=(',', ':'))}"


def generate_deterministic_name(command: str, env: Mapping[str, str] | None = None) -> str:
    """Derive a stable adjective-noun name from command and env.

    Example:
        >>> generate_deterministic_name("npm run dev") == generate_deterministic_name("npm  run dev ")
        True
    """
    h = fnv1a_32(normalize_for_hash(command, env))
    adjective = _ADJECTIVES[h % len(_ADJECTIVES)]
    noun = _NOUNS[(h // len(_ADJECTIVES)) % len(_NOUNS)]
    return f"{adjective}-{noun}"


def disambiguate_name(name: str, cwd: str, command: str) -> str:
    """Suffix a colliding implicit name with 4 hex digits derived from (cwd, command)."""
    suffix = fnv1a_32(f"{cwd}:{command}") & 0xFFFF
    return f"{name}-{suffix:04x}"
