"""Intake session state for the HTTP API.

One session per deal: roster, property configuration, the last consolidated
checklist, the artifact collection and the reconciler driving it. Sessions
live in process memory; closing one disconnects its push channel.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from deal_intake.domain.catalog.consolidator import CatalogProvider, RequirementCatalogConsolidator
from deal_intake.domain.catalog.models import ConsolidatedChecklist, PropertyConfig
from deal_intake.domain.documents.collection import ArtifactCollection
from deal_intake.domain.documents.matcher import DocumentMatcher
from deal_intake.domain.ocr.reconciler import DocumentBackend, OcrReconciler
from deal_intake.domain.parties.models import PartyRoster
from deal_intake.infra.clients.catalog import CatalogClient
from deal_intake.infra.clients.documents import DocumentServiceClient
from deal_intake.infra.config.settings import settings
from deal_intake.infra.push.channel import InMemoryPushChannel, PushChannel
from deal_intake.shared.errors import IntakeError
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

PushFactory = Callable[[str], PushChannel]


def default_push_factory(deal_id: str) -> PushChannel:
    """Redis channel when configured, otherwise a process-local one."""
    if settings.use_redis_push:
        from deal_intake.infra.push.redis_channel import (  # pylint: disable=import-outside-toplevel
            RedisPushChannel,
        )

        return RedisPushChannel(deal_id)
    return InMemoryPushChannel()


@dataclass
class IntakeSession:
    """State of one deal intake."""

    id: str
    collection: ArtifactCollection
    reconciler: OcrReconciler
    matcher: DocumentMatcher
    roster: PartyRoster = field(default_factory=PartyRoster.initial)
    property_config: PropertyConfig = field(default_factory=PropertyConfig)
    checklist: Optional[ConsolidatedChecklist] = None
    # Monotonic collection change counter for SSE clients
    revision: int = 0


class IntakeStore:
    """In-memory registry of intake sessions with shared backend clients."""

    def __init__(
        self,
        *,
        catalog: Optional[CatalogProvider] = None,
        documents: Optional[DocumentBackend] = None,
        push_factory: Optional[PushFactory] = None,
    ) -> None:
        self.catalog = catalog if catalog is not None else CatalogClient()
        self.documents = documents if documents is not None else DocumentServiceClient()
        self.push_factory = push_factory or default_push_factory
        self.consolidator = RequirementCatalogConsolidator(self.catalog)
        self._sessions: Dict[str, IntakeSession] = {}
        self._listeners: list[Callable[[IntakeSession], None]] = []

    def on_change(self, listener: Callable[[IntakeSession], None]) -> None:
        """Register a callback invoked after each artifact collection change."""
        self._listeners.append(listener)

    async def create(self, deal_id: Optional[str] = None) -> IntakeSession:
        deal_id = deal_id or uuid.uuid4().hex
        if deal_id in self._sessions:
            raise IntakeError(f"Intake {deal_id} already exists", code="intake_exists")
        collection = ArtifactCollection()
        reconciler = OcrReconciler(deal_id, collection, self.documents, self.push_factory(deal_id))
        session = IntakeSession(
            id=deal_id,
            collection=collection,
            reconciler=reconciler,
            matcher=DocumentMatcher(self.documents),
        )

        def _changed(_artifacts) -> None:
            session.revision += 1
            for listener in list(self._listeners):
                listener(session)

        collection.subscribe(_changed)
        self._sessions[deal_id] = session
        await reconciler.start()
        logger.info("Intake %s created", deal_id)
        return session

    def get(self, deal_id: str) -> Optional[IntakeSession]:
        return self._sessions.get(deal_id)

    async def aremove(self, deal_id: str) -> bool:
        session = self._sessions.pop(deal_id, None)
        if session is None:
            return False
        await session.reconciler.close()
        logger.info("Intake %s closed", deal_id)
        return True

    async def shutdown(self) -> None:
        for deal_id in list(self._sessions):
            await self.aremove(deal_id)
        for client in (self.catalog, self.documents):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    def __len__(self) -> int:
        return len(self._sessions)
