"""Recognition (OCR) lifecycle reconciliation for one intake session.

Each artifact moves Idle -> Uploading -> Processing -> Completed | Error.
Terminal states arrive through the push channel or, while the channel is
down, through short-timeout status polls. Every state change is applied
as a transform of the current artifact collection and only while the
reconciler is alive.
"""
from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set

from deal_intake.domain.documents.collection import (
    ArtifactCollection,
    remove_artifact,
    update_artifact,
)
from deal_intake.domain.documents.models import FileHandle, RemoteStatus, UploadedArtifact
from deal_intake.domain.documents.progress import recognition_stats
from deal_intake.infra.config.settings import settings
from deal_intake.infra.push.channel import EVENT_COMPLETED, PushChannel, PushEvent
from deal_intake.infra.storage.fs import delete_file
from deal_intake.shared.async_utils import call_later, fire_and_forget, run_sync
from deal_intake.shared.enums import (
    TERMINAL_RECOGNITION_STATUSES,
    ArtifactCategory,
    RecognitionStatus,
)
from deal_intake.shared.errors import (
    ArtifactNotFound,
    IntakeError,
    RemovalFailed,
    StatusTimeout,
)
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

ArtifactCallback = Callable[[UploadedArtifact], None]

# Events for remote ids nobody has registered yet
_MAX_EARLY_EVENTS = 256

_IN_FLIGHT_STATUSES = frozenset({RecognitionStatus.UPLOADING, RecognitionStatus.PROCESSING})


class DocumentBackend(Protocol):
    async def submit(
        self,
        file: FileHandle,
        *,
        declared_type: str,
        category: ArtifactCategory,
        party_id: Optional[str],
        local_id: str,
        deal_id: str,
    ) -> str: ...

    async def status(self, remote_id: str) -> RemoteStatus: ...

    async def process_now(self, remote_ids: Iterable[str]) -> None: ...

    async def remove(self, remote_id: str) -> None: ...


class OcrReconciler:
    """Drives submission and status reconciliation for one deal's artifacts."""

    def __init__(
        self,
        deal_id: str,
        collection: ArtifactCollection,
        backend: DocumentBackend,
        push: PushChannel,
        *,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        refresh_poll_delay: Optional[float] = None,
        checking_min_seconds: Optional[float] = None,
        disabled: Optional[bool] = None,
        on_complete: Optional[ArtifactCallback] = None,
        on_error: Optional[ArtifactCallback] = None,
    ) -> None:
        self.deal_id = deal_id
        self.collection = collection
        self.backend = backend
        self.push = push
        self.batch_size = max(batch_size or settings.ocr_submit_batch_size, 1)
        self.poll_interval = poll_interval if poll_interval is not None else settings.ocr_poll_interval_seconds
        self.refresh_poll_delay = (
            refresh_poll_delay if refresh_poll_delay is not None else settings.ocr_refresh_poll_delay_seconds
        )
        self.checking_min_seconds = (
            checking_min_seconds if checking_min_seconds is not None else settings.ocr_checking_min_seconds
        )
        self.disabled = settings.ocr_disabled if disabled is None else disabled
        self.on_complete = on_complete
        self.on_error = on_error

        self._alive = False
        self._closed = False
        self._in_flight: Set[str] = set()
        self._submitted: Set[str] = set()
        self._remote_to_local: Dict[str, str] = {}
        self._poll_terminal: Set[str] = set()
        self._early_events: "OrderedDict[str, PushEvent]" = OrderedDict()
        self._tasks: Set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._checking_gen = 0
        self._syncing = False
        self.checking = False

    # ──────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────

    @property
    def alive(self) -> bool:
        return self._alive

    async def start(self) -> None:
        if self._alive or self._closed:
            return
        self._alive = True
        for artifact in self.collection.snapshot():
            if artifact.remote_id:
                self._remote_to_local[artifact.remote_id] = artifact.id
        await self.push.connect(self._on_push)
        if self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop(), name=f"ocr-poll:{self.deal_id}")
        logger.info("Reconciler started for deal %s (push connected=%s)", self.deal_id, self.push.connected)

    async def close(self) -> None:
        """Disconnect the push channel and cancel every pending timer."""
        if self._closed:
            return
        self._alive = False
        self._closed = True
        await self.push.disconnect()
        pending = list(self._tasks)
        if self._poll_task is not None:
            pending.append(self._poll_task)
            self._poll_task = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        logger.info("Reconciler closed for deal %s", self.deal_id)

    def _spawn(self, coro: Any, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every scheduled submission, poll and timer has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ──────────────────────────────────────────────────────────────────
    # State helpers
    # ──────────────────────────────────────────────────────────────────

    def _mutate(self, local_id: str, **changes: Any) -> Optional[UploadedArtifact]:
        # Nothing lands once the session is gone
        if not self._alive:
            logger.debug("Dropping update for %s: reconciler is closed", local_id)
            return None
        self.collection.apply(lambda current: update_artifact(current, local_id, **changes))
        return self.collection.get(local_id)

    def _register(self, remote_id: str, local_id: str) -> None:
        self._remote_to_local[remote_id] = local_id

    def _local_for(self, remote_id: str) -> Optional[str]:
        local_id = self._remote_to_local.get(remote_id)
        if local_id is not None and self.collection.get(local_id) is not None:
            return local_id
        for artifact in self.collection.snapshot():
            if artifact.remote_id == remote_id:
                self._register(remote_id, artifact.id)
                return artifact.id
        return None

    def _notify(self, callback: Optional[ArtifactCallback], artifact: Optional[UploadedArtifact]) -> None:
        if callback is None or artifact is None:
            return
        try:
            callback(artifact)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Recognition callback failed for %s: %s", artifact.id, exc)

    def in_flight_remote_ids(self) -> List[str]:
        return [
            a.remote_id for a in self.collection.snapshot()
            if a.status in _IN_FLIGHT_STATUSES and a.remote_id
        ]

    # ──────────────────────────────────────────────────────────────────
    # Submission
    # ──────────────────────────────────────────────────────────────────

    def pending_submissions(self) -> List[UploadedArtifact]:
        """Idle artifacts, or Uploading ones without a remote id, not yet taken."""
        return [
            a for a in self.collection.snapshot()
            if (
                a.status == RecognitionStatus.IDLE
                or (a.status == RecognitionStatus.UPLOADING and not a.remote_id)
            )
            and a.id not in self._in_flight
            and a.id not in self._submitted
        ]

    async def sync(self) -> List[str]:
        """Submit every pending artifact in bounded batches.

        Only one run is active at a time; a call made while a run is active
        returns at once and its artifacts are picked up by that run, which
        re-reads the pending set before every batch.
        Returns the local ids that obtained a remote id.
        """
        if not self._alive or self.disabled or self._syncing:
            return []
        self._syncing = True
        submitted: List[str] = []
        try:
            while self._alive:
                batch = self.pending_submissions()[: self.batch_size]
                if not batch:
                    break
                results = await asyncio.gather(*(self._submit(a.id) for a in batch))
                submitted.extend(a.id for a, ok in zip(batch, results) if ok)
        finally:
            self._syncing = False
        return submitted

    def schedule_sync(self) -> Optional[asyncio.Task]:
        if not self._alive or self.disabled:
            return None
        return self._spawn(self.sync(), name=f"ocr-sync:{self.deal_id}")

    async def _submit(self, local_id: str) -> bool:
        if local_id in self._in_flight or local_id in self._submitted:
            return False
        artifact = self.collection.get(local_id)
        if artifact is None or not self._alive:
            return False
        if artifact.status not in (RecognitionStatus.IDLE, RecognitionStatus.UPLOADING):
            return False
        self._in_flight.add(local_id)
        self._submitted.add(local_id)
        try:
            self._mutate(local_id, status=RecognitionStatus.UPLOADING, error=None)
            try:
                remote_id = await self.backend.submit(
                    artifact.file,
                    declared_type=artifact.declared_type,
                    category=artifact.category,
                    party_id=artifact.party_id,
                    local_id=local_id,
                    deal_id=self.deal_id,
                )
            except IntakeError as exc:
                return self._submission_failed(local_id, exc.message)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.exception("Unexpected submission failure for %s", local_id)
                return self._submission_failed(local_id, str(exc) or exc.__class__.__name__)

            if not self._alive:
                return False
            current = self.collection.get(local_id)
            if current is None:
                logger.info("Artifact %s was removed while uploading (remote %s)", local_id, remote_id)
                return False
            self._register(remote_id, local_id)
            if current.status != RecognitionStatus.UPLOADING:
                # An event for the previous remote id settled it during the upload
                logger.info(
                    "Artifact %s settled as %s while uploading; keeping result (remote %s)",
                    local_id, current.status.value, remote_id,
                )
                return True
            self._mutate(local_id, remote_id=remote_id, status=RecognitionStatus.PROCESSING)
            logger.info("Artifact %s is processing as %s", local_id, remote_id)

            early = self._early_events.pop(remote_id, None)
            if early is not None:
                logger.debug("Applying buffered push event for %s", remote_id)
                self._apply_event(local_id, early, from_push=True)
            return True
        finally:
            self._in_flight.discard(local_id)

    def _submission_failed(self, local_id: str, message: str) -> bool:
        # Clearing the marker keeps the artifact eligible for retry
        self._submitted.discard(local_id)
        logger.warning("Submission of %s failed: %s", local_id, message)
        updated = self._mutate(
            local_id, status=RecognitionStatus.ERROR, validated=False, error=message,
        )
        self._notify(self.on_error, updated)
        return False

    async def retry(self, local_id: str) -> bool:
        """Explicit retry from Error or Idle; keeps any prior remote id."""
        artifact = self.collection.get(local_id)
        if artifact is None:
            raise ArtifactNotFound(f"Artifact {local_id} not found", code="artifact_not_found")
        if artifact.status not in (RecognitionStatus.ERROR, RecognitionStatus.IDLE):
            raise IntakeError(
                f"Artifact {local_id} is {artifact.status.value}; only failed or idle artifacts can be retried",
                code="not_retryable",
            )
        if local_id in self._in_flight:
            return False
        self._submitted.discard(local_id)
        self._poll_terminal.discard(local_id)
        self._mutate(
            local_id, status=RecognitionStatus.UPLOADING, validated=None, error=None, extracted_data=None,
        )
        return await self._submit(local_id)

    # ──────────────────────────────────────────────────────────────────
    # Push / poll reconciliation
    # ──────────────────────────────────────────────────────────────────

    async def _on_push(self, event: PushEvent) -> None:
        if not self._alive:
            return
        local_id = self._local_for(event.remote_id)
        if local_id is None:
            # The submission response has not registered this id yet
            self._early_events[event.remote_id] = event
            while len(self._early_events) > _MAX_EARLY_EVENTS:
                self._early_events.popitem(last=False)
            logger.debug("Buffered early push event for %s", event.remote_id)
            return
        self._apply_event(local_id, event, from_push=True)

    def _apply_event(self, local_id: str, event: PushEvent, *, from_push: bool) -> bool:
        if event.kind == EVENT_COMPLETED:
            return self._apply_terminal(
                local_id, RecognitionStatus.COMPLETED, event.extracted_data, None, from_push=from_push,
            )
        return self._apply_terminal(
            local_id, RecognitionStatus.ERROR, None, event.message, from_push=from_push,
        )

    def _apply_terminal(
        self,
        local_id: str,
        status: RecognitionStatus,
        extracted_data: Optional[Dict[str, Any]],
        message: Optional[str],
        *,
        from_push: bool,
    ) -> bool:
        artifact = self.collection.get(local_id)
        if artifact is None or not self._alive:
            return False
        if artifact.status in TERMINAL_RECOGNITION_STATUSES:
            # A push event may correct a poll-derived terminal state, nothing else may
            if not (from_push and local_id in self._poll_terminal):
                return False
        if from_push:
            self._poll_terminal.discard(local_id)
        else:
            self._poll_terminal.add(local_id)

        if status == RecognitionStatus.COMPLETED:
            updated = self._mutate(
                local_id, status=status, validated=True, extracted_data=extracted_data, error=None,
            )
            logger.info("Artifact %s recognised (%s)", local_id, artifact.remote_id)
            self._notify(self.on_complete, updated)
        else:
            updated = self._mutate(
                local_id, status=status, validated=False, error=message or "Recognition failed",
            )
            logger.warning("Artifact %s failed recognition: %s", local_id, message)
            self._notify(self.on_error, updated)
        return True

    async def poll(self, remote_id: str) -> Optional[RemoteStatus]:
        """One short-timeout status query; a timeout means still processing."""
        if not self._alive:
            return None
        try:
            result = await self.backend.status(remote_id)
        except StatusTimeout as exc:
            logger.debug("Status poll for %s: %s", remote_id, exc.message)
            return None
        if not self._alive:
            return None
        local_id = self._local_for(remote_id)
        if local_id is None or not result.is_terminal:
            return result
        if result.status == "completed":
            self._apply_terminal(
                local_id, RecognitionStatus.COMPLETED, result.extracted_data, None, from_push=False,
            )
        else:
            self._apply_terminal(
                local_id, RecognitionStatus.ERROR, None, result.error, from_push=False,
            )
        return result

    async def poll_in_flight(self) -> int:
        remote_ids = self.in_flight_remote_ids()
        if remote_ids:
            await asyncio.gather(*(self.poll(rid) for rid in remote_ids))
        return len(remote_ids)

    async def _poll_loop(self) -> None:
        while self._alive:
            await asyncio.sleep(self.poll_interval)
            if self._alive and not self.push.connected:
                await self.poll_in_flight()

    async def refresh(self) -> List[str]:
        """Ask the backend to process every in-flight artifact now.

        The broadcast is not awaited. When the push channel is down, one
        delayed poll per remote id follows.
        """
        remote_ids = self.in_flight_remote_ids()
        if not remote_ids or not self._alive:
            return []
        self.checking = True
        self._checking_gen += 1
        gen = self._checking_gen
        fire_and_forget(
            self.backend.process_now(list(remote_ids)),
            name=f"process-now:{self.deal_id}",
            logger=logger,
        )
        if not self.push.connected:
            for rid in remote_ids:
                self._spawn(
                    call_later(self.refresh_poll_delay, lambda rid=rid: self.poll(rid)),
                    name=f"ocr-refresh-poll:{rid}",
                )
        self._spawn(
            call_later(self.checking_min_seconds, lambda: self._clear_checking(gen)),
            name="ocr-checking",
        )
        logger.info("Refresh requested for %d document(s) on deal %s", len(remote_ids), self.deal_id)
        return remote_ids

    def _clear_checking(self, gen: int) -> None:
        # A newer refresh owns the flag
        if gen == self._checking_gen:
            self.checking = False

    # ──────────────────────────────────────────────────────────────────
    # Removal and stats
    # ──────────────────────────────────────────────────────────────────

    async def remove(self, local_id: str) -> UploadedArtifact:
        """Remove locally first, then on the backend.

        A backend failure raises RemovalFailed; the local removal stands.
        """
        artifact = self.collection.get(local_id)
        if artifact is None:
            raise ArtifactNotFound(f"Artifact {local_id} not found", code="artifact_not_found")
        self.collection.apply(lambda current: remove_artifact(current, local_id))
        self._submitted.discard(local_id)
        self._poll_terminal.discard(local_id)
        if artifact.remote_id and self._remote_to_local.get(artifact.remote_id) == local_id:
            del self._remote_to_local[artifact.remote_id]

        path = artifact.file.path
        if path is not None and not any(a.file.path == path for a in self.collection.snapshot()):
            await run_sync(delete_file, path)

        if artifact.remote_id:
            try:
                await self.backend.remove(artifact.remote_id)
            except RemovalFailed:
                logger.warning("Backend removal of %s failed", artifact.remote_id)
                raise
            except IntakeError as exc:
                logger.warning("Backend removal of %s failed: %s", artifact.remote_id, exc.message)
                raise RemovalFailed(exc.message, code=exc.code or "removal_failed") from exc
        return artifact

    def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(recognition_stats(self.collection.snapshot()))
        out["in_flight"] = len(self._in_flight)
        out["checking"] = self.checking
        out["push_connected"] = self.push.connected
        return out
