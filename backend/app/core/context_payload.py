"""Context attached to a chat turn, and its conversion to retrieval blocks."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from app.core.context_assembler import ContextFile


class ContextStatus(str, Enum):
    READY = "ready"
    MISSING = "missing"
    EMPTY = "empty"


@dataclass(frozen=True)
class RepositoryTarget:
    workspace: Optional[str]
    repository_slug: str
    repository_name: str
    branch: str


@dataclass
class ContextPayload:
    """Persistency-layer snapshot travelling with a message."""
    status: ContextStatus
    target: RepositoryTarget
    files: List[ContextFile] = field(default_factory=list)

    @classmethod
    def from_session(cls, session) -> "ContextPayload":
        files = [ContextFile(**f) for f in (session.context_files or [])]
        if not session.context_folder_exists:
            status = ContextStatus.MISSING
        elif not files:
            status = ContextStatus.EMPTY
        else:
            status = ContextStatus.READY
        return cls(
            status=status,
            target=RepositoryTarget(
                workspace=session.workspace_slug,
                repository_slug=session.repository_slug,
                repository_name=session.repository_name,
                branch=session.branch_name,
            ),
            files=files if status is ContextStatus.READY else [],
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "workspace": self.target.workspace,
            "repository": {"slug": self.target.repository_slug, "name": self.target.repository_name},
            "branch": self.target.branch,
            "files": [f.to_dict() for f in self.files],
        }


@dataclass(frozen=True)
class ContextBlock:
    """Ad hoc text scored by the retrieval index."""
    id: str
    content: str
    label: Optional[str] = None
    source: Optional[str] = None


def context_blocks(payload: ContextPayload) -> List[ContextBlock]:
    """One block per non-empty file of a ready payload."""
    if payload.status is not ContextStatus.READY:
        return []
    target = payload.target
    return [
        ContextBlock(
            id=f"{target.repository_slug}:{target.branch}:{f.path}",
            content=f.content,
            label=f"{target.repository_name} ({target.branch}) · {f.path}",
            source="persistency-layer",
        )
        for f in payload.files
        if f.content.strip()
    ]


def merge_context_blocks(*groups: Iterable[ContextBlock]) -> List[ContextBlock]:
    """Concatenate block groups, first occurrence of an id wins."""
    seen = set()
    merged = []
    for group in groups:
        for block in group:
            if block.id in seen:
                continue
            seen.add(block.id)
            merged.append(block)
    return merged
