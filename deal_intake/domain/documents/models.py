from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

from deal_intake.infra.storage.fs import read_bytes_async
from deal_intake.shared.enums import ArtifactCategory, RecognitionStatus


def new_artifact_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class FileHandle:
    """Raw uploaded file: either spooled on disk or held in memory."""

    name: str
    content_type: str = "application/octet-stream"
    path: Optional[Path] = None
    content: Optional[bytes] = None
    size: int = 0

    async def read(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise FileNotFoundError(f"No content for file {self.name}")
        return await read_bytes_async(self.path)


@dataclass(frozen=True)
class UploadedArtifact:
    """A locally tracked uploaded file plus its recognition state.

    `validated` is tri-state: True / False / None (pending).
    """

    file: FileHandle
    category: ArtifactCategory
    declared_type: str
    id: str = field(default_factory=new_artifact_id)
    party_id: Optional[str] = None
    satisfied_types: FrozenSet[str] = frozenset()
    remote_id: Optional[str] = None
    validated: Optional[bool] = None
    status: RecognitionStatus = RecognitionStatus.IDLE
    error: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        # satisfied types always include the primary type
        if self.declared_type not in self.satisfied_types:
            object.__setattr__(
                self, "satisfied_types", frozenset(self.satisfied_types) | {self.declared_type}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file.name,
            "size": self.file.size,
            "category": self.category.value,
            "party_id": self.party_id,
            "declared_type": self.declared_type,
            "satisfied_types": sorted(self.satisfied_types),
            "remote_id": self.remote_id,
            "validated": self.validated,
            "status": self.status.value,
            "error": self.error,
            "extracted_data": self.extracted_data,
        }


@dataclass(frozen=True)
class RemoteStatus:
    """Answer of the status query endpoint for one remote id."""

    status: str
    extracted_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {"completed", "error"}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RemoteStatus":
        status = str(raw.get("status") or "processing").lower()
        if status not in {"processing", "completed", "error"}:
            status = "processing"
        return cls(
            status=status,
            extracted_data=raw.get("extracted_data"),
            error=raw.get("error"),
        )
