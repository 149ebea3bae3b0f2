"""Tests for artifact-to-requirement matching."""
import itertools
from datetime import date

import pytest

from deal_intake.domain.catalog.models import (
    CategorySection,
    ChecklistSummary,
    ConsolidatedChecklist,
    DocumentRequirement,
)
from deal_intake.domain.documents.matcher import (
    MAX_FILES_PER_REQUIREMENT,
    remaining_slots,
    requirement_status,
    requirements_for_party,
    reusable_candidates,
    satisfies,
    status_of,
)
from deal_intake.domain.parties.models import Party
from deal_intake.shared.enums import (
    ArtifactCategory,
    Complexity,
    RecognitionStatus,
    RequirementScope,
    RequirementStatus,
    Role,
)
from tests.test_utils import make_artifact

RG = DocumentRequirement("RG", "RG")
PRINCIPAL = Party(role=Role.SELLER, id="p1")
SPOUSE = Party(role=Role.SELLER, id="p2", is_spouse=True)


def _checklist(seller_reqs):
    sections = {c: CategorySection() for c in ArtifactCategory}
    sections[ArtifactCategory.SELLERS] = CategorySection(requirements=tuple(seller_reqs))
    return ConsolidatedChecklist(
        sections=sections,
        summary=ChecklistSummary(Complexity.LOW, 0, date(2026, 1, 1)),
    )


def test_satisfies_primary_and_linked_types():
    """Test primary type and satisfied-types set both count."""
    artifact = make_artifact("RG", satisfied_types={"CPF"})
    assert satisfies(artifact, "RG")
    assert satisfies(artifact, "CPF")
    assert not satisfies(artifact, "CNH")


def test_requirements_for_party_applies_scope():
    """Test principal/spouse scope filtering."""
    checklist = _checklist([
        DocumentRequirement("RG", "RG"),
        DocumentRequirement("PACTO", "Pacto", scope=RequirementScope.PRINCIPAL),
        DocumentRequirement("RG_CONJUGE", "RG spouse", scope=RequirementScope.SPOUSE),
    ])
    assert [r.id for r in requirements_for_party(checklist, PRINCIPAL)] == ["RG", "PACTO"]
    assert [r.id for r in requirements_for_party(checklist, SPOUSE)] == ["RG", "RG_CONJUGE"]
    buyer = Party(role=Role.BUYER)
    assert requirements_for_party(checklist, buyer) == []


def test_status_empty_without_matches():
    """Test no matching artifact means empty."""
    other = make_artifact("RG", party_id="someone-else", validated=True)
    assert requirement_status(RG, PRINCIPAL, [other]) == RequirementStatus.EMPTY


@pytest.mark.parametrize(
    "flags",
    [combo for n in range(1, 4) for combo in itertools.product([True, False, None], repeat=n)],
)
def test_status_precedence_over_all_combinations(flags):
    """Test satisfied iff all validated, else pending over error."""
    artifacts = [make_artifact("RG", party_id="p1", validated=flag) for flag in flags]
    # noise that must not influence the result
    artifacts.append(make_artifact("RG", party_id="p2", validated=False))
    artifacts.append(make_artifact("CPF", party_id="p1", validated=None))

    result = requirement_status(RG, PRINCIPAL, artifacts)

    if all(flag is True for flag in flags):
        assert result == RequirementStatus.SATISFIED
    elif any(flag is None for flag in flags):
        assert result == RequirementStatus.PENDING
    else:
        assert result == RequirementStatus.ERROR


def test_status_of_empty_sequence():
    """Test status_of with nothing to aggregate."""
    assert status_of([]) == RequirementStatus.EMPTY


def test_status_ignores_other_category():
    """Test a buyer-filed artifact does not count for a seller slot."""
    artifact = make_artifact("RG", party_id="p1", validated=True, category=ArtifactCategory.BUYERS)
    assert requirement_status(RG, PRINCIPAL, [artifact]) == RequirementStatus.EMPTY


def test_property_pool_uses_unscoped_artifacts():
    """Test party=None addresses artifacts without a party."""
    deed = DocumentRequirement("MATRICULA", "Matricula")
    artifacts = [make_artifact("MATRICULA", category=ArtifactCategory.PROPERTY, validated=True)]
    assert requirement_status(deed, None, artifacts, ArtifactCategory.PROPERTY) == RequirementStatus.SATISFIED


def test_reusable_candidates_filters():
    """Test only validated, completed, correlated artifacts of the party qualify."""
    cpf = DocumentRequirement("CPF", "CPF")
    good = make_artifact(
        "CNH", party_id="p1", validated=True, status=RecognitionStatus.COMPLETED, remote_id="doc-1",
    )
    artifacts = [
        good,
        make_artifact("CNH", party_id="p1", validated=True, status=RecognitionStatus.COMPLETED),
        make_artifact("CNH", party_id="p1", validated=None, status=RecognitionStatus.PROCESSING, remote_id="doc-2"),
        make_artifact("CNH", party_id="p1", validated=False, status=RecognitionStatus.ERROR, remote_id="doc-3"),
        make_artifact(
            "CNH", party_id="p1", validated=True, status=RecognitionStatus.COMPLETED,
            remote_id="doc-4", satisfied_types={"CPF"},
        ),
        make_artifact("CNH", party_id="p9", validated=True, status=RecognitionStatus.COMPLETED, remote_id="doc-5"),
    ]
    assert reusable_candidates(PRINCIPAL, cpf, artifacts) == [good]


def test_remaining_slots():
    """Test the per-requirement file cap."""
    artifacts = [make_artifact("RG", party_id="p1") for _ in range(3)]
    assert remaining_slots("RG", PRINCIPAL, artifacts) == MAX_FILES_PER_REQUIREMENT - 3
    artifacts += [make_artifact("RG", party_id="p1") for _ in range(4)]
    assert remaining_slots("RG", PRINCIPAL, artifacts) == 0
