"""Party roster reducer: add, remove and patch parties per role.

Every function here is pure. It receives the current roster (or party
list) and returns a new one; nothing is mutated in place.

Spouse bookkeeping rules applied by `update_party`:

* a non-spouse individual that becomes married / civil-union gets a
  default spouse entry inserted right after it, unless the list already
  holds a spouse;
* a non-spouse that leaves married / civil-union loses the spouse entry
  that immediately follows it;
* a property-regime edit on a qualifying individual is copied to its
  paired counterpart (one hop only).

Pairing: a spouse entry belongs to the nearest preceding non-spouse
individual whose marital state qualifies. A principal's spouse is the
first following spouse entry that pairs back to it.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from deal_intake.domain.parties.models import Party, PartyRoster
from deal_intake.shared.enums import (
    DEFAULT_PROPERTY_REGIME,
    QUALIFYING_MARITAL_STATES,
    MaritalState,
    PersonType,
    PropertyRegime,
    Role,
)
from deal_intake.shared.errors import RosterError
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

PATCHABLE_FIELDS: Dict[str, Any] = {
    "person_type": PersonType,
    "marital_state": MaritalState,
    "property_regime": PropertyRegime,
    "is_spouse": bool,
}


def _coerce_role(role: Any) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise RosterError(f"Unknown role: {role!r}", code="unknown_role") from exc


def coerce_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a patch and convert raw values to enum members."""
    changes: Dict[str, Any] = {}
    for key, value in patch.items():
        kind = PATCHABLE_FIELDS.get(key)
        if kind is None:
            raise RosterError(f"Field cannot be patched: {key}", code="unknown_field")
        if kind is bool:
            changes[key] = bool(value)
            continue
        if value is None:
            if key == "person_type":
                raise RosterError("person_type cannot be empty", code="invalid_value")
            changes[key] = None
            continue
        try:
            changes[key] = kind(value)
        except ValueError as exc:
            raise RosterError(f"Invalid value for {key}: {value!r}", code="invalid_value") from exc
    return changes


def _check_index(parties: Sequence[Party], index: int) -> None:
    if not 0 <= index < len(parties):
        raise RosterError(f"Party index out of range: {index}", code="bad_index")


def _assert_transition(before: Sequence[Party], after: Sequence[Party]) -> None:
    """Post-conditions every roster edit must keep."""
    if before and not after:
        raise RosterError("Roster edit would leave the role empty", code="invariant")
    if abs(len(after) - len(before)) > 1:
        raise RosterError("Roster edit changed more than one entry", code="invariant")
    before_ids = [p.id for p in before if not p.is_spouse]
    after_ids = [p.id for p in after if not p.is_spouse]
    if [i for i in before_ids if i in after_ids] != [i for i in after_ids if i in before_ids]:
        raise RosterError("Roster edit reordered principals", code="invariant")


def default_party(role: Role) -> Party:
    """A fresh single individual."""
    return Party(role=role)


def default_spouse(principal: Party, marital_state: MaritalState) -> Party:
    return Party(
        role=principal.role,
        person_type=PersonType.INDIVIDUAL,
        marital_state=marital_state,
        property_regime=principal.property_regime or DEFAULT_PROPERTY_REGIME,
        is_spouse=True,
    )


def _is_qualifying_principal(party: Party) -> bool:
    return not party.is_spouse and party.is_individual and party.is_qualifying


def principal_index_for(parties: Sequence[Party], spouse_index: int) -> Optional[int]:
    """Nearest preceding qualifying principal of a spouse entry."""
    for j in range(spouse_index - 1, -1, -1):
        if _is_qualifying_principal(parties[j]):
            return j
    return None


def spouse_index_for(parties: Sequence[Party], principal_index: int) -> Optional[int]:
    """First following spouse entry that pairs back to the principal."""
    for j in range(principal_index + 1, len(parties)):
        if parties[j].is_spouse and principal_index_for(parties, j) == principal_index:
            return j
    return None


def paired_index(parties: Sequence[Party], index: int) -> Optional[int]:
    """Index of the counterpart of parties[index], if any."""
    if parties[index].is_spouse:
        return principal_index_for(parties, index)
    return spouse_index_for(parties, index)


def apply_party_patch(
    parties: Sequence[Party],
    index: int,
    patch: Mapping[str, Any],
) -> Tuple[Party, ...]:
    """Apply a patch to one party and run spouse synchronisation."""
    _check_index(parties, index)
    changes = coerce_patch(patch)

    old = parties[index]
    updated = replace(old, **changes)
    items: List[Party] = list(parties)
    items[index] = updated

    was_qualifying = old.marital_state in QUALIFYING_MARITAL_STATES
    is_qualifying = updated.marital_state in QUALIFYING_MARITAL_STATES

    if (
        updated.is_individual
        and is_qualifying
        and not was_qualifying
        and not updated.is_spouse
        and not any(p.is_spouse for i, p in enumerate(items) if i != index)
    ):
        spouse = default_spouse(updated, updated.marital_state)
        items.insert(index + 1, spouse)
        logger.info("roster: inserted spouse %s after party %s", spouse.id, updated.id)

    elif was_qualifying and not is_qualifying and not updated.is_spouse:
        nxt = index + 1
        if nxt < len(items) and items[nxt].is_spouse:
            removed = items.pop(nxt)
            logger.info("roster: removed spouse %s of party %s", removed.id, updated.id)

    if (
        updated.is_individual
        and is_qualifying
        and updated.property_regime != old.property_regime
    ):
        counterpart = paired_index(items, index)
        if counterpart is not None:
            items[counterpart] = replace(items[counterpart], property_regime=updated.property_regime)

    _assert_transition(parties, items)
    return tuple(items)


def add_party(roster: PartyRoster, role: Any) -> PartyRoster:
    """Append a default party to the role list."""
    role = _coerce_role(role)
    parties = roster.parties(role)
    return roster.with_parties(role, (*parties, default_party(role)))


def remove_party(roster: PartyRoster, role: Any, index: int) -> PartyRoster:
    """Remove a party; a no-op when it is the last one of its role."""
    role = _coerce_role(role)
    parties = roster.parties(role)
    _check_index(parties, index)
    if len(parties) <= 1:
        return roster
    return roster.with_parties(role, tuple(p for i, p in enumerate(parties) if i != index))


def update_party(roster: PartyRoster, role: Any, index: int, patch: Mapping[str, Any]) -> PartyRoster:
    """Patch a party and keep its spouse entry consistent."""
    role = _coerce_role(role)
    return roster.with_parties(role, apply_party_patch(roster.parties(role), index, patch))


def add_spouse(roster: PartyRoster, role: Any, index: int) -> PartyRoster:
    """Insert a spouse for a qualifying principal that lacks one."""
    role = _coerce_role(role)
    parties = roster.parties(role)
    _check_index(parties, index)
    principal = parties[index]
    if not _is_qualifying_principal(principal):
        raise RosterError("Only a married individual can get a spouse", code="not_qualifying")
    if spouse_index_for(parties, index) is not None:
        return roster
    items = list(parties)
    items.insert(index + 1, default_spouse(principal, principal.marital_state))
    _assert_transition(parties, items)
    return roster.with_parties(role, tuple(items))


def spouse_missing(parties: Sequence[Party]) -> List[int]:
    """Indices of qualifying principals without a spouse entry."""
    return [
        i for i, p in enumerate(parties)
        if _is_qualifying_principal(p) and spouse_index_for(parties, i) is None
    ]


def can_add_spouse(parties: Sequence[Party]) -> bool:
    """Whether the "add spouse" affordance should be offered.

    Offered while the list has no spouse entry at all, or while some
    qualifying principal still lacks one.
    """
    if not any(p.is_spouse for p in parties):
        return True
    return bool(spouse_missing(parties))
