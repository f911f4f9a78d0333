# gls/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Project:
    """
    A GitLab project as seen by the search workflow.

    Identity is ``id``. Projects resolved from a bare numeric identifier are
    synthetic: only ``id`` is known, ``path_with_namespace`` and ``web_url``
    are empty and ``display_name`` is the identifier as typed.
    """
    id: int
    path_with_namespace: str = ""
    display_name: str = ""
    web_url: str = ""
    archived: bool = False

    @classmethod
    def from_api(cls, attrs: dict[str, Any]) -> Project:
        """Build a Project from a (simple) GitLab project representation."""
        path = attrs.get("path_with_namespace") or ""
        return cls(
            id=int(attrs["id"]),
            path_with_namespace=path,
            display_name=attrs.get("name_with_namespace") or path,
            web_url=attrs.get("web_url") or "",
            archived=bool(attrs.get("archived", False)),
        )

    @classmethod
    def synthetic(cls, project_id: int) -> Project:
        return cls(id=project_id, display_name=str(project_id))

    @property
    def label(self) -> str:
        """Best human-readable name for progress and error output."""
        return self.display_name or self.path_with_namespace or str(self.id)


@dataclass(frozen=True, slots=True)
class SearchMatch:
    project_id: int
    project_display_name: str
    file_path: str
    start_line: int
    matched_text: str
    ref: str
    basename: str = ""
    filename: str = ""

    @classmethod
    def from_api(cls, raw: dict[str, Any], project: Project) -> SearchMatch:
        """
        Decode one blob search hit.

        Raises:
            KeyError, TypeError, ValueError: The hit lacks required fields or
                carries values of the wrong type.
        """
        start_line = int(raw["startline"])
        if start_line < 0:
            raise ValueError(f"negative start line: {start_line}")
        return cls(
            project_id=int(raw.get("project_id") or project.id),
            project_display_name=project.label,
            file_path=str(raw["path"]),
            start_line=start_line,
            matched_text=str(raw.get("data") or ""),
            ref=str(raw["ref"]),
            basename=str(raw.get("basename") or ""),
            filename=str(raw.get("filename") or ""),
        )

    def numbered_lines(self) -> list[tuple[int, str]]:
        """Return (absolute line number, text) pairs of the matched snippet."""
        return [(self.start_line + i, line) for i, line in enumerate(self.matched_text.splitlines())]


@dataclass(frozen=True, slots=True)
class SearchFailure:
    """
    Error descriptor for a single project's search.

    kind is one of: http, transport, timeout, decode, deadline, unexpected.
    """
    kind: str
    message: str


@dataclass(frozen=True, slots=True)
class ProjectOutcome:
    project: Project
    matches: tuple[SearchMatch, ...] = ()
    error: SearchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """
    Outcomes of one search run, one entry per project, in resolution order.
    """
    query: str
    outcomes: tuple[ProjectOutcome, ...] = field(default_factory=tuple)

    @property
    def matches(self) -> list[SearchMatch]:
        return [m for o in self.outcomes for m in o.matches]

    @property
    def failed(self) -> list[ProjectOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> list[ProjectOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def total_matches(self) -> int:
        return sum(len(o.matches) for o in self.outcomes)

    def summary(self) -> dict[str, int]:
        return {
            "projects": len(self.outcomes),
            "failed": len(self.failed),
            "matches": self.total_matches,
        }
