"""Consolidation of per-pair requirement catalogs into one checklist."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from deal_intake.domain.catalog.models import (
    CatalogRequest,
    CatalogResponse,
    CategorySection,
    ChecklistSummary,
    ConsolidatedChecklist,
    DocumentRequirement,
    PropertyConfig,
    clamp_deed_count,
)
from deal_intake.domain.parties.models import Party
from deal_intake.shared.enums import ArtifactCategory, Complexity
from deal_intake.shared.errors import CatalogPartial, CatalogUnavailable, PairFailure
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)


class CatalogProvider(Protocol):
    async def fetch(self, request: CatalogRequest) -> CatalogResponse: ...


def merge_requirements(
    groups: Iterable[Sequence[DocumentRequirement]],
    deed_count: int,
) -> Tuple[DocumentRequirement, ...]:
    """Union requirement lists, deduplicated by (id, scope), first-seen order.

    A requirement is obligatory when any pair marks it obligatory.
    Deed requirements get their clamped required count.
    """
    merged: Dict[Tuple[str, Any], DocumentRequirement] = {}
    for group in groups:
        for req in group:
            seen = merged.get(req.key)
            if seen is None:
                merged[req.key] = req
                continue
            merged[req.key] = replace(
                seen,
                obligatory=seen.obligatory or req.obligatory,
                description=seen.description or req.description,
            )
    count = clamp_deed_count(deed_count)
    return tuple(
        replace(r, required_count=count) if r.is_quantity_bearing else r
        for r in merged.values()
    )


def merge_alerts(groups: Iterable[Sequence[str]]) -> Tuple[str, ...]:
    out: List[str] = []
    for group in groups:
        for alert in group:
            if alert not in out:
                out.append(alert)
    return tuple(out)


def merge_responses(
    responses: Sequence[CatalogResponse],
    deed_count: int,
    today: date,
) -> Tuple[Dict[ArtifactCategory, CategorySection], ChecklistSummary]:
    sections: Dict[ArtifactCategory, CategorySection] = {}
    for category in ArtifactCategory:
        picked = [r.sections.get(category, CategorySection()) for r in responses]
        sections[category] = CategorySection(
            requirements=merge_requirements((s.requirements for s in picked), deed_count),
            alerts=merge_alerts(s.alerts for s in picked),
        )
    max_complexity = max((r.complexity for r in responses), key=lambda c: c.rank, default=Complexity.LOW)
    max_days = max((r.estimated_days for r in responses), default=0)
    summary = ChecklistSummary(
        max_complexity=max_complexity,
        max_estimated_days=max_days,
        estimated_completion_date=today + timedelta(days=max_days),
    )
    return sections, summary


class RequirementCatalogConsolidator:
    """Fans out one catalog request per (seller, buyer) pair and merges them.

    Pairs whose attributes are identical share a single request. Failed
    pairs are tolerated as long as one pair succeeds; the checklist then
    carries the failures and `is_partial` is true.
    """

    def __init__(self, provider: CatalogProvider, *, today: Optional[Callable[[], date]] = None) -> None:
        self.provider = provider
        self._today = today or date.today

    async def consolidate(
        self,
        sellers: Sequence[Party],
        buyers: Sequence[Party],
        property_config: PropertyConfig,
    ) -> ConsolidatedChecklist:
        pairs = [(s, b) for s in sellers for b in buyers]
        if not pairs:
            raise CatalogUnavailable("No seller/buyer pairs to request", code="no_pairs")

        requests = {
            (s.id, b.id): CatalogRequest.for_pair(s, b, property_config) for s, b in pairs
        }
        unique = list(dict.fromkeys(requests.values()))
        results = await asyncio.gather(
            *(self.provider.fetch(req) for req in unique), return_exceptions=True
        )
        by_request = dict(zip(unique, results))

        successes: List[CatalogResponse] = []
        failures: List[PairFailure] = []
        for (seller_id, buyer_id), req in requests.items():
            result = by_request[req]
            if isinstance(result, Exception):
                failures.append(PairFailure(seller_id, buyer_id, str(result)))
            elif isinstance(result, BaseException):
                # Cancellation is not ours to swallow
                raise result
            else:
                successes.append(result)

        if not successes:
            logger.error("catalog: all %d pair request(s) failed", len(pairs))
            raise CatalogUnavailable(
                "Requirement catalog is unavailable; try again", failures=failures
            )

        deed_count = clamp_deed_count(property_config.deed_count)
        sections, summary = merge_responses(successes, deed_count, self._today())
        if failures:
            logger.warning("catalog: %s", CatalogPartial(failures).message)
        logger.info(
            "catalog: consolidated %d/%d pair(s), complexity=%s days=%d",
            len(successes), len(pairs), summary.max_complexity.value, summary.max_estimated_days,
        )
        return ConsolidatedChecklist(
            sections=sections,
            summary=summary,
            deed_count=deed_count,
            failures=failures,
        )
