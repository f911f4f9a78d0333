from __future__ import annotations

from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest

from gls.registry import Instance
from gls.searcher import GitlabSearcher

PageSource = Callable[[int], list[dict[str, Any]]]
SearchFn = Callable[[int, str], list[dict[str, Any]]]


def make_project(pid: int, path: str | None = None) -> dict[str, Any]:
    path = path or f"group/project-{pid}"
    return {
        "id": pid,
        "name": path.rsplit("/", 1)[-1],
        "name_with_namespace": path.replace("/", " / "),
        "path_with_namespace": path,
        "web_url": f"https://gitlab.example.com/{path}",
    }


def make_hit(pid: int, path: str = "src/main.py", startline: int = 10, data: str = "# TODO: fix\n") -> dict[str, Any]:
    return {
        "basename": path.rsplit(".", 1)[0],
        "data": data,
        "path": path,
        "filename": path,
        "id": None,
        "ref": "main",
        "startline": startline,
        "project_id": pid,
    }


def paged(projects: list[dict[str, Any]], per_page: int = 50) -> PageSource:
    """Serve `projects` in pages of `per_page`; pages past the end are empty."""

    def source(page: int) -> list[dict[str, Any]]:
        start = (page - 1) * per_page
        return projects[start:start + per_page]

    return source


class FakeProject:
    def __init__(self, manager: FakeProjectManager, project_id: int) -> None:
        self.manager = manager
        self.id = project_id

    def search(self, scope: str, search: str, **kwargs: Any) -> list[dict[str, Any]]:
        self.manager.search_calls.append({"project_id": self.id, "scope": scope, "search": search, **kwargs})
        return self.manager.search_fn(self.id, search)


class FakeProjectManager:
    """Stands in for gl.projects: list() pages and lazy get().search()."""

    def __init__(self, page_source: PageSource, search_fn: SearchFn) -> None:
        self.page_source = page_source
        self.search_fn = search_fn
        self.list_calls: list[dict[str, Any]] = []
        self.search_calls: list[dict[str, Any]] = []

    def list(self, **kwargs: Any) -> list[SimpleNamespace]:
        self.list_calls.append(kwargs)
        return [SimpleNamespace(attributes=dict(p)) for p in self.page_source(kwargs["page"])]

    def get(self, project_id: int, lazy: bool = False) -> FakeProject:
        return FakeProject(self, project_id)


class FakeGitlab:
    def __init__(
            self,
            page_source: PageSource | None = None,
            search_fn: SearchFn | None = None,
            version: dict[str, Any] | Exception | None = None,
    ) -> None:
        self.projects = FakeProjectManager(
            page_source or (lambda page: []),
            search_fn or (lambda pid, query: []),
        )
        self.version_response = version if version is not None else {"version": "17.4.0", "revision": "abc123"}

    def http_get(self, path: str, **kwargs: Any) -> Any:
        assert path == "/version"
        if isinstance(self.version_response, Exception):
            raise self.version_response
        return self.version_response


@pytest.fixture
def instance() -> Instance:
    return Instance(name="work", url="https://gitlab.example.com/", token="glpat-test")


@pytest.fixture
def make_searcher(instance: Instance) -> Callable[..., GitlabSearcher]:
    def factory(gl: FakeGitlab, **kwargs: Any) -> GitlabSearcher:
        kwargs.setdefault("show_progress", False)
        return GitlabSearcher(instance, gl=gl, **kwargs)

    return factory
