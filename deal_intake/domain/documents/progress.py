"""Checklist progress accounting."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Sequence

from deal_intake.domain.catalog.models import ConsolidatedChecklist, clamp_deed_count
from deal_intake.domain.documents.matcher import matching_artifacts, requirements_for_party, status_of
from deal_intake.domain.documents.models import UploadedArtifact
from deal_intake.domain.parties.models import Party, PartyRoster
from deal_intake.shared.enums import ArtifactCategory, RecognitionStatus, RequirementStatus


@dataclass(frozen=True)
class Progress:
    total_required: int
    validated_required: int
    pending: int = 0

    @property
    def percent(self) -> int:
        if self.total_required <= 0:
            return 0
        return round(self.validated_required * 100 / self.total_required)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_required": self.total_required,
            "validated_required": self.validated_required,
            "pending": self.pending,
            "percent": self.percent,
        }


def _satisfied(matches: Sequence[UploadedArtifact]) -> bool:
    return status_of(matches) == RequirementStatus.SATISFIED


def _deeds_done(matches: Sequence[UploadedArtifact], deeds: int) -> int:
    # A rejected deed blocks the whole requirement; pending ones just don't count yet
    if any(a.validated is False for a in matches):
        return 0
    return min(sum(1 for a in matches if a.validated is True), deeds)


def party_progress(
    checklist: ConsolidatedChecklist,
    party: Party,
    artifacts: Sequence[UploadedArtifact],
) -> Progress:
    """Obligatory requirements of one party and how many are satisfied."""
    required = [r for r in requirements_for_party(checklist, party) if r.obligatory]
    done = sum(1 for r in required if _satisfied(matching_artifacts(r.id, party, artifacts)))
    return Progress(total_required=len(required), validated_required=done)


def checklist_progress(
    checklist: ConsolidatedChecklist,
    roster: PartyRoster,
    artifacts: Sequence[UploadedArtifact],
    deed_count: int | None = None,
) -> Progress:
    """Overall progress over obligatory requirements.

    A requirement counts once it is satisfied, i.e. every matching file
    is validated. Quantity-bearing property requirements count validated
    deeds up to their clamped deed count, and none at all while any deed
    is rejected. `pending` is the number of artifacts still waiting for
    validation.
    """
    total = 0
    validated = 0
    for party in (*roster.sellers, *roster.buyers):
        tally = party_progress(checklist, party, artifacts)
        total += tally.total_required
        validated += tally.validated_required

    deeds = clamp_deed_count(deed_count if deed_count is not None else checklist.deed_count)
    for req in checklist.section(ArtifactCategory.PROPERTY).requirements:
        if not req.obligatory:
            continue
        matches = matching_artifacts(req.id, None, artifacts, ArtifactCategory.PROPERTY)
        if req.is_quantity_bearing:
            total += deeds
            validated += _deeds_done(matches, deeds)
        else:
            total += 1
            validated += 1 if _satisfied(matches) else 0

    pending = sum(1 for a in artifacts if a.validated is None)
    return Progress(total_required=total, validated_required=validated, pending=pending)


def recognition_stats(artifacts: Iterable[UploadedArtifact]) -> Dict[str, int]:
    """Artifact counts per recognition status, plus the total."""
    stats = {status.value: 0 for status in RecognitionStatus}
    total = 0
    for artifact in artifacts:
        stats[artifact.status.value] += 1
        total += 1
    stats["total"] = total
    return stats
