"""Matching of uploaded artifacts against checklist requirement slots."""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from deal_intake.domain.catalog.models import ConsolidatedChecklist, DocumentRequirement
from deal_intake.domain.documents.collection import ArtifactCollection, add_artifacts
from deal_intake.domain.documents.models import UploadedArtifact, new_artifact_id
from deal_intake.domain.parties.models import Party
from deal_intake.shared.enums import (
    ROLE_CATEGORY,
    ArtifactCategory,
    RecognitionStatus,
    RequirementScope,
    RequirementStatus,
)
from deal_intake.shared.errors import ArtifactNotFound, IntakeError, LinkFailed
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

# Files accepted per requirement slot and party
MAX_FILES_PER_REQUIREMENT = 5


class LinkClient(Protocol):
    async def link(self, source_remote_id: str, requirement_id: str) -> str: ...


def satisfies(artifact: UploadedArtifact, requirement_id: str) -> bool:
    return artifact.declared_type == requirement_id or requirement_id in artifact.satisfied_types


def requirement_applies(requirement: DocumentRequirement, party: Party) -> bool:
    if requirement.scope is None:
        return True
    if party.is_spouse:
        return requirement.scope == RequirementScope.SPOUSE
    return requirement.scope == RequirementScope.PRINCIPAL


def requirements_for_party(checklist: ConsolidatedChecklist, party: Party) -> List[DocumentRequirement]:
    """Requirements of the party's role section that apply to it.

    Spouse-scoped entries apply only to spouses; principal-scoped entries
    only to non-spouses; unscoped entries to everyone.
    """
    section = checklist.section(ROLE_CATEGORY[party.role])
    return [r for r in section.requirements if requirement_applies(r, party)]


def _party_pool(
    artifacts: Iterable[UploadedArtifact],
    party: Optional[Party],
    category: Optional[ArtifactCategory] = None,
) -> List[UploadedArtifact]:
    party_id = party.id if party is not None else None
    if category is None and party is not None:
        category = ROLE_CATEGORY[party.role]
    return [
        a for a in artifacts
        if a.party_id == party_id and (category is None or a.category == category)
    ]


def matching_artifacts(
    requirement_id: str,
    party: Optional[Party],
    artifacts: Iterable[UploadedArtifact],
    category: Optional[ArtifactCategory] = None,
) -> List[UploadedArtifact]:
    return [a for a in _party_pool(artifacts, party, category) if satisfies(a, requirement_id)]


def status_of(matches: Sequence[UploadedArtifact]) -> RequirementStatus:
    """Aggregate validation flags: all True wins, then pending, then error."""
    if not matches:
        return RequirementStatus.EMPTY
    flags = [a.validated for a in matches]
    if all(flag is True for flag in flags):
        return RequirementStatus.SATISFIED
    if any(flag is None for flag in flags):
        return RequirementStatus.PENDING
    return RequirementStatus.ERROR


def requirement_status(
    requirement: DocumentRequirement,
    party: Optional[Party],
    artifacts: Iterable[UploadedArtifact],
    category: Optional[ArtifactCategory] = None,
) -> RequirementStatus:
    """Status of one requirement slot. `party=None` addresses the property pool."""
    return status_of(matching_artifacts(requirement.id, party, artifacts, category))


def reusable_candidates(
    party: Optional[Party],
    requirement: DocumentRequirement,
    artifacts: Iterable[UploadedArtifact],
    category: Optional[ArtifactCategory] = None,
) -> List[UploadedArtifact]:
    """Validated, recognised artifacts of the same pool that could be linked."""
    return [
        a for a in _party_pool(artifacts, party, category)
        if not satisfies(a, requirement.id)
        and a.validated is True
        and a.status == RecognitionStatus.COMPLETED
        and a.remote_id
    ]


def remaining_slots(
    requirement_id: str,
    party: Optional[Party],
    artifacts: Iterable[UploadedArtifact],
    category: Optional[ArtifactCategory] = None,
    max_files: int = MAX_FILES_PER_REQUIREMENT,
) -> int:
    return max(max_files - len(matching_artifacts(requirement_id, party, artifacts, category)), 0)


class DocumentMatcher:
    """Links validated artifacts to further requirements without re-running recognition."""

    def __init__(self, link_client: LinkClient) -> None:
        self.link_client = link_client

    async def link(self, source: UploadedArtifact, requirement_id: str) -> UploadedArtifact:
        """Clone `source` under a new requirement id.

        The source record is left untouched. Raises LinkFailed when the
        source has no remote id or the backend rejects the link.
        """
        if not source.remote_id:
            raise LinkFailed(
                f"Artifact {source.id} has no remote id yet; wait for the upload to finish",
                code="missing_remote_id",
            )
        try:
            new_remote_id = await self.link_client.link(source.remote_id, requirement_id)
        except LinkFailed:
            raise
        except IntakeError as exc:
            raise LinkFailed(exc.message, code=exc.code or "link_failed") from exc
        if not new_remote_id:
            raise LinkFailed("Link endpoint returned no document id", code="empty_response")

        logger.info("Linked %s (%s) to %s as %s", source.id, source.remote_id, requirement_id, new_remote_id)
        return replace(
            source,
            id=new_artifact_id(),
            remote_id=new_remote_id,
            declared_type=requirement_id,
            satisfied_types=frozenset({requirement_id}),
        )

    async def link_in(
        self,
        collection: ArtifactCollection,
        source_id: str,
        requirement_id: str,
    ) -> Tuple[UploadedArtifact, ...]:
        """Link an artifact held in `collection` and append the clone."""
        source = collection.get(source_id)
        if source is None:
            raise ArtifactNotFound(f"Artifact {source_id} not found", code="artifact_not_found")
        clone = await self.link(source, requirement_id)
        return collection.apply(lambda current: add_artifacts(current, [clone]))
