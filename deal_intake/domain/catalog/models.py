"""Requirement catalog data model."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

from deal_intake.domain.parties.models import Party
from deal_intake.shared.enums import ArtifactCategory, Complexity, RequirementScope
from deal_intake.shared.errors import CatalogPartial, PairFailure

# Deed (matricula) requirements are quantity bearing: one per registered deed
DEED_REQUIREMENT_IDS = frozenset({"MATRICULA"})
MAX_DEED_COUNT = 5


def clamp_deed_count(deed_count: Optional[int]) -> int:
    try:
        value = int(deed_count or 1)
    except (TypeError, ValueError):
        value = 1
    return min(max(value, 1), MAX_DEED_COUNT)


@dataclass(frozen=True)
class PropertyConfig:
    """Property attributes that drive the requirement catalog."""

    state: str = ""
    property_type: str = ""
    deed_count: int = 1
    financing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "property_type": self.property_type,
            "deed_count": self.deed_count,
            "financing": self.financing,
        }


@dataclass(frozen=True)
class DocumentRequirement:
    """One document type the checklist asks for."""

    id: str
    label: str
    description: Optional[str] = None
    scope: Optional[RequirementScope] = None
    obligatory: bool = True
    required_count: int = 1

    @property
    def key(self) -> Tuple[str, Optional[RequirementScope]]:
        return (self.id, self.scope)

    @property
    def is_quantity_bearing(self) -> bool:
        return self.id in DEED_REQUIREMENT_IDS

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DocumentRequirement":
        scope_raw = raw.get("scope")
        return cls(
            id=str(raw["id"]),
            label=str(raw.get("label") or raw["id"]),
            description=raw.get("description"),
            scope=RequirementScope(scope_raw) if scope_raw else None,
            obligatory=bool(raw.get("obligatory", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "scope": self.scope.value if self.scope else None,
            "obligatory": self.obligatory,
            "required_count": self.required_count,
        }


@dataclass(frozen=True)
class CategorySection:
    """Requirements and alerts for one checklist category."""

    requirements: Tuple[DocumentRequirement, ...] = ()
    alerts: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requirements": [r.to_dict() for r in self.requirements],
            "alerts": list(self.alerts),
        }


@dataclass(frozen=True)
class CatalogRequest:
    """Attributes of one (seller, buyer) pair sent to the catalog provider."""

    seller_type: str
    seller_marital_state: Optional[str]
    seller_regime: Optional[str]
    buyer_type: str
    buyer_marital_state: Optional[str]
    buyer_regime: Optional[str]
    financing: bool
    property_state: str
    property_type: str
    deed_count: int

    @classmethod
    def for_pair(cls, seller: Party, buyer: Party, prop: PropertyConfig) -> "CatalogRequest":
        return cls(
            seller_type=seller.person_type.value,
            seller_marital_state=seller.marital_state.value if seller.marital_state else None,
            seller_regime=seller.property_regime.value if seller.property_regime else None,
            buyer_type=buyer.person_type.value,
            buyer_marital_state=buyer.marital_state.value if buyer.marital_state else None,
            buyer_regime=buyer.property_regime.value if buyer.property_regime else None,
            financing=prop.financing,
            property_state=prop.state,
            property_type=prop.property_type,
            deed_count=clamp_deed_count(prop.deed_count),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "seller_type": self.seller_type,
            "seller_marital_state": self.seller_marital_state,
            "seller_regime": self.seller_regime,
            "buyer_type": self.buyer_type,
            "buyer_marital_state": self.buyer_marital_state,
            "buyer_regime": self.buyer_regime,
            "financing": self.financing,
            "property_state": self.property_state,
            "property_type": self.property_type,
            "deed_count": self.deed_count,
        }


@dataclass(frozen=True)
class CatalogResponse:
    """Requirement set returned for one pair."""

    sections: Dict[ArtifactCategory, CategorySection]
    complexity: Complexity = Complexity.LOW
    estimated_days: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CatalogResponse":
        sections: Dict[ArtifactCategory, CategorySection] = {}
        for category in ArtifactCategory:
            section = raw.get(category.value) or {}
            sections[category] = CategorySection(
                requirements=tuple(
                    DocumentRequirement.from_dict(r) for r in section.get("requirements") or []
                ),
                alerts=tuple(str(a) for a in section.get("alerts") or []),
            )
        return cls(
            sections=sections,
            complexity=Complexity(raw.get("complexity") or Complexity.LOW.value),
            estimated_days=int(raw.get("estimated_days") or 0),
        )


@dataclass(frozen=True)
class ChecklistSummary:
    max_complexity: Complexity
    max_estimated_days: int
    estimated_completion_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_complexity": self.max_complexity.value,
            "max_estimated_days": self.max_estimated_days,
            "estimated_completion_date": self.estimated_completion_date.isoformat(),
        }


@dataclass(frozen=True)
class ConsolidatedChecklist:
    """Merged requirement view across every seller x buyer pair."""

    sections: Dict[ArtifactCategory, CategorySection]
    summary: ChecklistSummary
    deed_count: int = 1
    failures: List[PairFailure] = field(default_factory=list)

    def section(self, category: ArtifactCategory) -> CategorySection:
        return self.sections.get(category, CategorySection())

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    def partial_warning(self) -> Optional[CatalogPartial]:
        """The non-fatal CatalogPartial to surface as a banner, if any."""
        return CatalogPartial(self.failures) if self.failures else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sections": {c.value: s.to_dict() for c, s in self.sections.items()},
            "summary": self.summary.to_dict(),
            "deed_count": self.deed_count,
            "partial": self.is_partial,
        }
