"""FastAPI HTTP server for the deal document intake."""
from __future__ import annotations

import asyncio
import json
import re
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from deal_intake.api.http.state import IntakeSession, IntakeStore
from deal_intake.domain.catalog.models import PropertyConfig, clamp_deed_count
from deal_intake.domain.documents.collection import add_artifacts, artifacts_from_files
from deal_intake.domain.documents.matcher import (
    remaining_slots,
    requirement_status,
    requirements_for_party,
    reusable_candidates,
)
from deal_intake.domain.documents.models import FileHandle, new_artifact_id
from deal_intake.domain.documents.progress import checklist_progress, party_progress
from deal_intake.domain.parties import roster as roster_ops
from deal_intake.infra.config.settings import settings
from deal_intake.infra.storage.fs import ensure_directories, upload_path, write_bytes_async
from deal_intake.infra.storage.redis_client import close_redis
from deal_intake.shared.enums import ArtifactCategory, Role
from deal_intake.shared.errors import (
    ArtifactNotFound,
    CatalogUnavailable,
    IntakeError,
    LinkFailed,
    RemovalFailed,
    RosterError,
    UploadFailed,
)
from deal_intake.shared.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


class SafeStreamingResponse(StreamingResponse):
    """Custom StreamingResponse that swallows cancellation during shutdown."""

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        except asyncio.CancelledError:
            logger.info("StreamingResponse cancelled (shutdown/disconnect); closing gracefully")
            return


class StreamManager:
    """Manager for SSE connections per intake."""

    def __init__(self):
        self.connections: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    def connect(self, intake_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self.connections[intake_id].append(queue)
        return queue

    def disconnect(self, intake_id: str, queue: asyncio.Queue) -> None:
        if intake_id not in self.connections:
            return
        filtered = [q for q in self.connections[intake_id] if q is not queue]
        if filtered:
            self.connections[intake_id] = filtered
        else:
            del self.connections[intake_id]

    def broadcast(self, intake_id: str, message: dict) -> None:
        """Queue an SSE message for every client of the intake."""
        if intake_id not in self.connections:
            return
        msg = f"data: {json.dumps(message, ensure_ascii=False)}\n\n"
        to_remove = []
        for queue in list(self.connections[intake_id]):
            try:
                queue.put_nowait(msg)
            except asyncio.QueueFull as exc:
                logger.warning("Stream broadcast error for %s: %s", intake_id, exc)
                to_remove.append(queue)
        for queue in to_remove:
            self.disconnect(intake_id, queue)

    def close(self, intake_id: str) -> None:
        for queue in self.connections.pop(intake_id, []):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass

    async def shutdown(self):
        for intake_id in list(self.connections):
            self.close(intake_id)


stream_manager = StreamManager()
intake_store = IntakeStore()


def _artifacts_changed(session: IntakeSession) -> None:
    stream_manager.broadcast(
        session.id,
        {
            "type": "artifacts",
            "revision": session.revision,
            "artifacts": [a.to_dict() for a in session.collection.snapshot()],
            "stats": session.reconciler.stats(),
        },
    )


intake_store.on_change(_artifacts_changed)


@asynccontextmanager
async def lifespan(_app: FastAPI):  # noqa: ARG001
    """Application lifespan context manager."""
    ensure_directories()
    logger.info("Server started")
    yield
    logger.info("Shutting down server...")
    try:
        await asyncio.wait_for(stream_manager.shutdown(), timeout=2.0)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        pass
    await intake_store.shutdown()
    if settings.redis_url:
        await close_redis()
    logger.info("Server shutdown complete")


app = FastAPI(title="Deal Document Intake", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Log HTTP requests with their intake id."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    try:
        response = await call_next(request)
    except Exception:  # pylint: disable=broad-exception-caught
        error_id = str(uuid4())
        logger.exception(
            "request_error error_id=%s method=%s path=%s", error_id, request.method, request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_id": error_id},
        )
    status = response.status_code
    log_fn = logger.info if status < 400 else logger.warning
    log_fn(
        "request id=%s method=%s path=%s status=%s intake_id=%s",
        request_id,
        request.method,
        request.url.path,
        status,
        request.path_params.get("intake_id"),
    )
    response.headers["X-Request-ID"] = request_id
    return response


def _status_for(exc: IntakeError) -> int:
    if isinstance(exc, CatalogUnavailable):
        return 503
    if isinstance(exc, (RemovalFailed, UploadFailed)):
        return 502
    if isinstance(exc, ArtifactNotFound):
        return 404
    if isinstance(exc, RosterError) and exc.code == "bad_index":
        return 404
    if isinstance(exc, LinkFailed) and exc.code == "not_configured":
        return 503
    return 400


@app.exception_handler(IntakeError)
async def intake_error_handler(_request: Request, exc: IntakeError) -> JSONResponse:
    body: Dict[str, Any] = {"detail": exc.message, "code": exc.code}
    failures = getattr(exc, "failures", None)
    if failures:
        body["failures"] = [
            {"seller_id": f.seller_id, "buyer_id": f.buyer_id, "reason": f.reason} for f in failures
        ]
    return JSONResponse(status_code=_status_for(exc), content=body)


_INTAKE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,64}$")


def _validate_intake_id(intake_id: str) -> None:
    if not intake_id or not _INTAKE_ID_PATTERN.match(intake_id):
        raise HTTPException(
            status_code=400,
            detail="Invalid intake_id format. Must be 3-64 alphanumeric characters, hyphens, or underscores.",
        )


def _session(intake_id: str) -> IntakeSession:
    _validate_intake_id(intake_id)
    session = intake_store.get(intake_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Intake {intake_id} not found")
    return session


def _role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown role: {role}") from exc


def _roster_view(session: IntakeSession) -> Dict[str, Any]:
    out = session.roster.to_dict()
    out["affordances"] = {
        role.value: {
            "spouse_missing": roster_ops.spouse_missing(session.roster.parties(role)),
            "can_add_spouse": roster_ops.can_add_spouse(session.roster.parties(role)),
        }
        for role in Role
    }
    return out


def _summary(session: IntakeSession) -> Dict[str, Any]:
    return {
        "intake_id": session.id,
        "roster": _roster_view(session),
        "property": session.property_config.to_dict(),
        "has_checklist": session.checklist is not None,
        "artifacts": len(session.collection),
        "stats": session.reconciler.stats(),
    }


def _checklist_view(session: IntakeSession) -> Dict[str, Any]:
    checklist = session.checklist
    if checklist is None:
        raise HTTPException(status_code=409, detail="Checklist has not been consolidated yet")
    out = checklist.to_dict()
    warning = checklist.partial_warning()
    out["warning"] = warning.message if warning else None
    out["progress"] = checklist_progress(
        checklist, session.roster, session.collection.snapshot(), session.property_config.deed_count,
    ).to_dict()
    return out


class CreateIntakeRequest(BaseModel):
    """Request model for intake creation."""

    intake_id: Optional[str] = None


class PropertyConfigRequest(BaseModel):
    state: str = ""
    property_type: str = ""
    deed_count: int = Field(default=1, ge=1)
    financing: bool = False


class LinkRequest(BaseModel):
    requirement_id: str


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/intakes")
async def create_intake(req: CreateIntakeRequest) -> Dict[str, Any]:
    if req.intake_id:
        _validate_intake_id(req.intake_id)
    session = await intake_store.create(req.intake_id)
    return _summary(session)


@app.get("/intakes/{intake_id}")
async def get_intake(intake_id: str) -> Dict[str, Any]:
    return _summary(_session(intake_id))


@app.delete("/intakes/{intake_id}")
async def delete_intake(intake_id: str) -> Dict[str, Any]:
    _session(intake_id)
    stream_manager.close(intake_id)
    await intake_store.aremove(intake_id)
    return {"ok": True, "intake_id": intake_id}


# ──────────────────────────────────────────────────────────────────
# Roster
# ──────────────────────────────────────────────────────────────────

async def _refresh_checklist(session: IntakeSession) -> None:
    """Re-consolidate an existing checklist after a roster or property edit."""
    if session.checklist is None:
        return
    try:
        session.checklist = await intake_store.consolidator.consolidate(
            session.roster.sellers, session.roster.buyers, session.property_config,
        )
    except CatalogUnavailable as exc:
        # Stale requirements must not be served as current
        logger.warning("Checklist for %s dropped, catalog unavailable: %s", session.id, exc)
        session.checklist = None


@app.get("/intakes/{intake_id}/roster")
async def get_roster(intake_id: str) -> Dict[str, Any]:
    return _roster_view(_session(intake_id))


@app.post("/intakes/{intake_id}/roster/{role}")
async def add_roster_party(intake_id: str, role: str) -> Dict[str, Any]:
    session = _session(intake_id)
    session.roster = roster_ops.add_party(session.roster, _role(role))
    await _refresh_checklist(session)
    return _roster_view(session)


@app.patch("/intakes/{intake_id}/roster/{role}/{index}")
async def update_roster_party(intake_id: str, role: str, index: int, patch: Dict[str, Any]) -> Dict[str, Any]:
    session = _session(intake_id)
    session.roster = roster_ops.update_party(session.roster, _role(role), index, patch)
    await _refresh_checklist(session)
    return _roster_view(session)


@app.delete("/intakes/{intake_id}/roster/{role}/{index}")
async def remove_roster_party(intake_id: str, role: str, index: int) -> Dict[str, Any]:
    session = _session(intake_id)
    session.roster = roster_ops.remove_party(session.roster, _role(role), index)
    await _refresh_checklist(session)
    return _roster_view(session)


@app.post("/intakes/{intake_id}/roster/{role}/{index}/spouse")
async def add_roster_spouse(intake_id: str, role: str, index: int) -> Dict[str, Any]:
    session = _session(intake_id)
    session.roster = roster_ops.add_spouse(session.roster, _role(role), index)
    await _refresh_checklist(session)
    return _roster_view(session)


@app.put("/intakes/{intake_id}/property")
async def set_property(intake_id: str, req: PropertyConfigRequest) -> Dict[str, Any]:
    session = _session(intake_id)
    session.property_config = PropertyConfig(
        state=req.state,
        property_type=req.property_type,
        deed_count=clamp_deed_count(req.deed_count),
        financing=req.financing,
    )
    await _refresh_checklist(session)
    return session.property_config.to_dict()


# ──────────────────────────────────────────────────────────────────
# Checklist
# ──────────────────────────────────────────────────────────────────

@app.post("/intakes/{intake_id}/checklist")
async def consolidate_checklist(intake_id: str) -> Dict[str, Any]:
    """Rebuild the checklist from the current roster and property."""
    session = _session(intake_id)
    session.checklist = await intake_store.consolidator.consolidate(
        session.roster.sellers, session.roster.buyers, session.property_config,
    )
    return _checklist_view(session)


@app.get("/intakes/{intake_id}/checklist")
async def get_checklist(intake_id: str) -> Dict[str, Any]:
    return _checklist_view(_session(intake_id))


@app.get("/intakes/{intake_id}/progress")
async def get_progress(intake_id: str) -> Dict[str, Any]:
    session = _session(intake_id)
    if session.checklist is None:
        raise HTTPException(status_code=409, detail="Checklist has not been consolidated yet")
    artifacts = session.collection.snapshot()
    return {
        "overall": checklist_progress(
            session.checklist, session.roster, artifacts, session.property_config.deed_count,
        ).to_dict(),
        "parties": {
            p.id: party_progress(session.checklist, p, artifacts).to_dict()
            for p in (*session.roster.sellers, *session.roster.buyers)
        },
    }


@app.get("/intakes/{intake_id}/parties/{party_id}/requirements")
async def get_party_requirements(intake_id: str, party_id: str) -> List[Dict[str, Any]]:
    session = _session(intake_id)
    if session.checklist is None:
        raise HTTPException(status_code=409, detail="Checklist has not been consolidated yet")
    party = session.roster.find(party_id)
    if party is None:
        raise HTTPException(status_code=404, detail=f"Party {party_id} not found")
    artifacts = session.collection.snapshot()
    out = []
    for req in requirements_for_party(session.checklist, party):
        out.append({
            **req.to_dict(),
            "status": requirement_status(req, party, artifacts).value,
            "remaining_slots": remaining_slots(req.id, party, artifacts),
            "reusable": [a.id for a in reusable_candidates(party, req, artifacts)],
        })
    return out


# ──────────────────────────────────────────────────────────────────
# Artifacts
# ──────────────────────────────────────────────────────────────────

@app.get("/intakes/{intake_id}/artifacts")
async def list_artifacts(intake_id: str) -> List[Dict[str, Any]]:
    return [a.to_dict() for a in _session(intake_id).collection.snapshot()]


@app.post("/intakes/{intake_id}/artifacts")
async def upload_artifact(
    intake_id: str,
    request: Request,
    category: ArtifactCategory = Query(...),
    requirement_id: str = Query(..., min_length=1),
    filename: str = Query(..., min_length=1),
    party_id: Optional[str] = Query(None),
) -> Dict[str, Any]:
    """Spool the raw request body and queue it for recognition."""
    session = _session(intake_id)
    party = None
    if party_id:
        party = session.roster.find(party_id)
        if party is None:
            raise HTTPException(status_code=404, detail=f"Party {party_id} not found")

    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="Empty upload")

    slots = remaining_slots(requirement_id, party, session.collection.snapshot(), category)
    if slots <= 0:
        return {"accepted": [], "truncated": 1}

    spool_id = new_artifact_id()
    path = upload_path(intake_id, spool_id, filename)
    await write_bytes_async(path, body)
    handle = FileHandle(
        name=filename,
        content_type=request.headers.get("content-type") or "application/octet-stream",
        path=path,
        size=len(body),
    )
    new = artifacts_from_files([handle], category, requirement_id, party_id)
    session.collection.apply(lambda current: add_artifacts(current, new))
    session.reconciler.schedule_sync()
    return {"accepted": [a.to_dict() for a in new], "truncated": 0}


@app.post("/intakes/{intake_id}/artifacts/{artifact_id}/link")
async def link_artifact(intake_id: str, artifact_id: str, req: LinkRequest) -> Dict[str, Any]:
    session = _session(intake_id)
    artifacts = await session.matcher.link_in(session.collection, artifact_id, req.requirement_id)
    return artifacts[-1].to_dict()


@app.post("/intakes/{intake_id}/artifacts/{artifact_id}/retry")
async def retry_artifact(intake_id: str, artifact_id: str) -> Dict[str, Any]:
    session = _session(intake_id)
    await session.reconciler.retry(artifact_id)
    artifact = session.collection.get(artifact_id)
    if artifact is None:
        raise ArtifactNotFound(f"Artifact {artifact_id} not found", code="artifact_not_found")
    return artifact.to_dict()


@app.delete("/intakes/{intake_id}/artifacts/{artifact_id}")
async def remove_artifact_endpoint(intake_id: str, artifact_id: str) -> Dict[str, Any]:
    session = _session(intake_id)
    removed = await session.reconciler.remove(artifact_id)
    return {"ok": True, "removed": removed.id}


@app.post("/intakes/{intake_id}/refresh")
async def refresh_artifacts(intake_id: str) -> Dict[str, Any]:
    session = _session(intake_id)
    remote_ids = await session.reconciler.refresh()
    return {"refreshed": remote_ids, "checking": session.reconciler.checking}


@app.get("/intakes/{intake_id}/stats")
async def get_stats(intake_id: str) -> Dict[str, Any]:
    return _session(intake_id).reconciler.stats()


@app.get("/intakes/{intake_id}/stream")
async def stream_intake_events(intake_id: str):
    """Server-Sent Events endpoint for artifact collection changes."""
    session = _session(intake_id)
    queue = stream_manager.connect(intake_id)

    async def event_generator():
        heartbeat_interval = 30
        heartbeat_msg = 'data: {"type": "heartbeat"}\n\n'
        initial = {
            "type": "connected",
            "intake_id": intake_id,
            "revision": session.revision,
            "artifacts": [a.to_dict() for a in session.collection.snapshot()],
        }
        yield f"data: {json.dumps(initial, ensure_ascii=False)}\n\n"
        try:
            while True:
                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                    if msg is None:
                        break
                    yield msg
                except asyncio.TimeoutError:
                    yield heartbeat_msg
        except asyncio.CancelledError:
            pass
        finally:
            stream_manager.disconnect(intake_id, queue)

    return SafeStreamingResponse(event_generator(), media_type="text/event-stream")
