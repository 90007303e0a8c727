"""Identity resolution and merge engine.

Merges each extracted arc into the accumulated arc list. Identity keys:
  Arc:          name, trimmed and case-insensitive (pluggable matcher)
  Character:    lower-cased name (within an arc)
  Relationship: unordered pair of lower-cased names
  Term:         lower-cased ``original``

Name matching is naive: two differently named arcs describing
the same phase never unify, and unrelated arcs that share a name do. Swap
in ``fuzzy_name_matcher`` (thefuzz) or another comparator to change that
without touching the merge rules.

All functions copy incoming records, so the accumulator never shares
objects with an extraction result.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from thefuzz import fuzz

from storyglossary.core.exceptions import IdentityAmbiguityError
from storyglossary.core.logging import get_logger
from storyglossary.schemas.glossary import (
    Arc,
    Character,
    CharacterRelationship,
    Relationship,
    Term,
)

logger = get_logger(__name__)

ArcMatcher = Callable[[str, str], bool]

FUZZY_THRESHOLD = 90  # fuzz ratio for "same arc" in the fuzzy matcher

# Highest first; anything below keeps the existing role.
ROLE_PRECEDENCE = ("protagonist", "antagonist", "major")

_LONGEST_WINS = ("description", "speech_style", "physical_appearance", "personality")
_EXISTING_WINS = ("id", "name", "korean_name", "english_name", "emoji", "age", "gender", "occupation")


# ── Arc matchers ────────────────────────────────────────────────────────


def normalize_name(name: str) -> str:
    return name.strip().lower()


def same_name(a: str, b: str) -> bool:
    """Default arc matcher: trimmed, case-insensitive equality."""
    return normalize_name(a) == normalize_name(b)


def fuzzy_name_matcher(threshold: int = FUZZY_THRESHOLD) -> ArcMatcher:
    """Build a matcher accepting names whose fuzz ratio reaches ``threshold``."""

    def matcher(a: str, b: str) -> bool:
        return fuzz.ratio(normalize_name(a), normalize_name(b)) >= threshold

    return matcher


# ── Identity keys ───────────────────────────────────────────────────────


def relationship_key(rel: Relationship) -> frozenset[str]:
    return frozenset((normalize_name(rel.character_a), normalize_name(rel.character_b)))


def term_key(term: Term) -> str:
    return normalize_name(term.original)


def character_key(character: Character) -> tuple[str, ...]:
    """Cross-arc identity: (name, korean_name) when a korean_name is known."""
    if character.korean_name.strip():
        return (normalize_name(character.name), normalize_name(character.korean_name))
    return (normalize_name(character.name),)


# ── Unions ──────────────────────────────────────────────────────────────


def union_strings(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Ordered set union; first appearance decides the position."""
    seen: set[str] = set()
    result: list[str] = []
    for value in (*existing, *incoming):
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def union_relationships(
    existing: list[Relationship], incoming: Iterable[Relationship]
) -> list[Relationship]:
    """Union by unordered name pair; the first-seen relationship is kept."""
    result = list(existing)
    seen = {relationship_key(rel) for rel in result}
    for rel in incoming:
        key = relationship_key(rel)
        if key not in seen:
            seen.add(key)
            result.append(rel.model_copy(deep=True))
    return result


def union_terms(existing: list[Term], incoming: Iterable[Term]) -> list[Term]:
    """Union by lower-cased original; the first-seen term is kept."""
    result = list(existing)
    seen = {term_key(term) for term in result}
    for term in incoming:
        key = term_key(term)
        if key not in seen:
            seen.add(key)
            result.append(term.model_copy(deep=True))
    return result


def union_character_relationships(
    existing: list[CharacterRelationship], incoming: Iterable[CharacterRelationship]
) -> list[CharacterRelationship]:
    result = list(existing)
    seen = {(normalize_name(r.character_name), r.arc_id) for r in result}
    for rel in incoming:
        key = (normalize_name(rel.character_name), rel.arc_id)
        if key not in seen:
            seen.add(key)
            result.append(rel.model_copy(deep=True))
    return result


def union_characters(existing: list[Character], incoming: Iterable[Character]) -> list[Character]:
    """Union by lower-cased name; a repeated name is folded with ``merge_character``."""
    result = list(existing)
    positions = {normalize_name(char.name): i for i, char in enumerate(result)}
    for char in incoming:
        key = normalize_name(char.name)
        if key in positions:
            idx = positions[key]
            result[idx] = merge_character(result[idx], char)
        else:
            positions[key] = len(result)
            result.append(char.model_copy(deep=True))
    return result


# ── Character merge ─────────────────────────────────────────────────────


def escalate_role(existing: str, incoming: str) -> str:
    for role in ROLE_PRECEDENCE:
        if role in (existing, incoming):
            return role
    return existing or incoming


def merge_character(existing: Character, incoming: Character) -> Character:
    """Combine two records of the same character into a new one.

    - description, speech_style, physical_appearance, personality: the
      longer non-empty text wins (ties keep existing)
    - traits, abilities: ordered union
    - role: escalates protagonist > antagonist > major, else existing
    - name_variants: union, existing keys win
    - relationships: union by (character name, arc id)
    - every other scalar: existing unless empty
    """
    update: dict[str, object] = {}

    for field in _LONGEST_WINS:
        old, new = getattr(existing, field), getattr(incoming, field)
        update[field] = new if len(new.strip()) > len(old.strip()) else old

    for field in _EXISTING_WINS:
        old = getattr(existing, field)
        update[field] = old if old.strip() else getattr(incoming, field)

    update["traits"] = union_strings(existing.traits, incoming.traits)
    update["abilities"] = union_strings(existing.abilities, incoming.abilities)
    update["role"] = escalate_role(existing.role, incoming.role)
    update["name_variants"] = {**incoming.name_variants, **existing.name_variants}
    update["relationships"] = union_character_relationships(
        [r.model_copy() for r in existing.relationships], incoming.relationships
    )

    return existing.model_copy(update=update, deep=True)


def build_character_index(arcs: list[Arc]) -> list[Character]:
    """Canonical cross-arc character list, first-appearance order.

    Characters are unified with ``character_key``; relationships without an
    arc tag are tagged with the arc they were found in.
    """
    index: dict[tuple[str, ...], Character] = {}
    for arc in arcs:
        for char in arc.characters:
            tagged = char.model_copy(
                update={
                    "relationships": [
                        rel.model_copy(update={"arc_id": rel.arc_id or arc.id})
                        for rel in char.relationships
                    ]
                },
                deep=True,
            )
            key = character_key(tagged)
            index[key] = merge_character(index[key], tagged) if key in index else tagged
    return list(index.values())


# ── Arc merge ───────────────────────────────────────────────────────────


def find_matching_arc(arcs: list[Arc], name: str, matcher: ArcMatcher = same_name) -> Arc | None:
    """Return the single arc matching ``name``.

    Raises:
        IdentityAmbiguityError: More than one arc matches.
    """
    matches = [arc for arc in arcs if matcher(arc.name, name)]
    if len(matches) > 1:
        raise _ambiguous(name, [arc.name for arc in matches])
    return matches[0] if matches else None


def check_arc_batch(arcs: list[Arc], new_arcs: list[Arc], matcher: ArcMatcher = same_name) -> None:
    """Resolve every incoming arc before any of them is merged.

    Arcs appended earlier in the batch count as candidates for later ones,
    exactly as sequential ``merge_arc`` calls would see them.

    Raises:
        IdentityAmbiguityError: Some arc in the batch matches more than one arc.
    """
    names = [arc.name for arc in arcs]
    for new_arc in new_arcs:
        matches = [name for name in names if matcher(name, new_arc.name)]
        if len(matches) > 1:
            raise _ambiguous(new_arc.name, matches)
        if not matches:
            names.append(new_arc.name)


def _ambiguous(name: str, matches: list[str]) -> IdentityAmbiguityError:
    return IdentityAmbiguityError(
        f"Arc name '{name}' matches {len(matches)} existing arcs",
        context={"arc_name": name, "matches": matches},
    )


def merge_arc(
    arcs: list[Arc],
    new_arc: Arc,
    chunk_index: int,
    *,
    matcher: ArcMatcher = same_name,
) -> Arc:
    """Merge ``new_arc`` into the accumulated arc list in place.

    Args:
        arcs: The accumulator's arc list; mutated.
        new_arc: Incoming arc, left untouched.
        chunk_index: Chunk that produced ``new_arc``.
        matcher: Arc name comparator.

    Returns:
        The arc in ``arcs`` that now holds the merged data.
    """
    existing = find_matching_arc(arcs, new_arc.name, matcher)
    if existing is None:
        appended = new_arc.model_copy(deep=True)
        arcs.append(appended)
        logger.debug("arc_added", arc=appended.name, chunk=chunk_index)
        return appended

    if new_arc.description.strip():
        existing.description = new_arc.description
    if new_arc.theme.strip():
        existing.theme = new_arc.theme

    existing.characters = union_characters(existing.characters, new_arc.characters)
    existing.relationships = union_relationships(existing.relationships, new_arc.relationships)
    existing.terms = union_terms(existing.terms, new_arc.terms)
    existing.key_events = union_strings(existing.key_events, new_arc.key_events)
    existing.background_changes = union_strings(
        existing.background_changes, new_arc.background_changes
    )
    existing.start_chunk = min(existing.start_chunk, new_arc.start_chunk, chunk_index)
    existing.end_chunk = max(existing.end_chunk, chunk_index)

    logger.debug(
        "arc_merged",
        arc=existing.name,
        chunk=chunk_index,
        characters=len(existing.characters),
        terms=len(existing.terms),
    )
    return existing
