"""Artifact collection: pure transforms plus the single owning holder.

All writers go through `ArtifactCollection.apply`, which hands the
transform the latest tuple. A transform computed from a stale snapshot
would drop concurrent updates, so callers never build the new tuple
themselves outside of `apply`.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from deal_intake.domain.documents.models import FileHandle, UploadedArtifact
from deal_intake.shared.enums import ArtifactCategory
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

Artifacts = Tuple[UploadedArtifact, ...]
Transform = Callable[[Artifacts], Sequence[UploadedArtifact]]
Listener = Callable[[Artifacts], None]


def find_artifact(artifacts: Iterable[UploadedArtifact], local_id: str) -> Optional[UploadedArtifact]:
    for artifact in artifacts:
        if artifact.id == local_id:
            return artifact
    return None


def add_artifacts(artifacts: Sequence[UploadedArtifact], new: Iterable[UploadedArtifact]) -> Artifacts:
    return (*artifacts, *new)


def update_artifact(artifacts: Sequence[UploadedArtifact], local_id: str, **changes: Any) -> Artifacts:
    """Return a copy with one artifact replaced; unknown ids leave it unchanged."""
    return tuple(replace(a, **changes) if a.id == local_id else a for a in artifacts)


def remove_artifact(artifacts: Sequence[UploadedArtifact], local_id: str) -> Artifacts:
    return tuple(a for a in artifacts if a.id != local_id)


def artifacts_from_files(
    files: Iterable[FileHandle],
    category: ArtifactCategory,
    requirement_id: str,
    party_id: Optional[str] = None,
) -> List[UploadedArtifact]:
    """Idle artifacts for freshly selected files."""
    return [
        UploadedArtifact(
            file=f,
            category=category,
            declared_type=requirement_id,
            party_id=party_id,
            satisfied_types=frozenset({requirement_id}),
        )
        for f in files
    ]


class ArtifactCollection:
    """The one shared artifact tuple of an intake session."""

    def __init__(self, artifacts: Iterable[UploadedArtifact] = ()) -> None:
        self._artifacts: Artifacts = tuple(artifacts)
        self._listeners: List[Listener] = []

    def snapshot(self) -> Artifacts:
        return self._artifacts

    def get(self, local_id: str) -> Optional[UploadedArtifact]:
        return find_artifact(self._artifacts, local_id)

    def apply(self, transform: Transform) -> Artifacts:
        """Replace the collection with transform(current) and notify listeners."""
        before = self._artifacts
        after = tuple(transform(before))
        self._artifacts = after
        if after != before:
            for listener in list(self._listeners):
                try:
                    listener(after)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    logger.warning("Artifact listener failed: %s", exc)
        return after

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._artifacts)
