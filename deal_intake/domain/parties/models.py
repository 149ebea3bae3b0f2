from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from deal_intake.shared.enums import (
    QUALIFYING_MARITAL_STATES,
    MaritalState,
    PersonType,
    PropertyRegime,
    Role,
)


def new_party_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Party:
    """A seller or buyer, possibly the spouse of the preceding principal."""

    role: Role
    id: str = field(default_factory=new_party_id)
    person_type: PersonType = PersonType.INDIVIDUAL
    marital_state: Optional[MaritalState] = MaritalState.SINGLE
    property_regime: Optional[PropertyRegime] = None
    is_spouse: bool = False

    @property
    def is_individual(self) -> bool:
        return self.person_type == PersonType.INDIVIDUAL

    @property
    def is_qualifying(self) -> bool:
        """Married or in a civil union (needs a spouse entry)."""
        return self.marital_state in QUALIFYING_MARITAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "person_type": self.person_type.value,
            "marital_state": self.marital_state.value if self.marital_state else None,
            "property_regime": self.property_regime.value if self.property_regime else None,
            "is_spouse": self.is_spouse,
        }


@dataclass(frozen=True)
class PartyRoster:
    """Ordered party lists per role."""

    sellers: Tuple[Party, ...] = ()
    buyers: Tuple[Party, ...] = ()

    def parties(self, role: Role) -> Tuple[Party, ...]:
        return self.sellers if role == Role.SELLER else self.buyers

    def with_parties(self, role: Role, parties: Tuple[Party, ...]) -> "PartyRoster":
        if role == Role.SELLER:
            return PartyRoster(sellers=tuple(parties), buyers=self.buyers)
        return PartyRoster(sellers=self.sellers, buyers=tuple(parties))

    def find(self, party_id: str) -> Optional[Party]:
        for party in (*self.sellers, *self.buyers):
            if party.id == party_id:
                return party
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sellers": [p.to_dict() for p in self.sellers],
            "buyers": [p.to_dict() for p in self.buyers],
        }

    @classmethod
    def initial(cls) -> "PartyRoster":
        """One default seller and one default buyer."""
        return cls(sellers=(Party(role=Role.SELLER),), buyers=(Party(role=Role.BUYER),))
