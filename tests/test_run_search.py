import os
import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

import gitlab.exceptions
import pytest
import requests.exceptions

from conftest import FakeGitlab, make_hit, make_project, paged
from gls.exceptions import NoProjectsError
from gls.models import Project

ROOT = str(Path(__file__).resolve().parents[1])


def _projects(n: int) -> list[Project]:
    return [Project.from_api(make_project(i)) for i in range(1, n + 1)]


def test_run_search_one_outcome_per_project(make_searcher) -> None:
    gl = FakeGitlab(search_fn=lambda pid, query: [make_hit(pid, startline=pid)])

    result = make_searcher(gl).run_search("TODO", _projects(5))

    assert [o.project.id for o in result.outcomes] == [1, 2, 3, 4, 5]
    assert all(o.ok for o in result.outcomes)
    assert result.total_matches == 5
    assert sorted(c["project_id"] for c in gl.projects.search_calls) == [1, 2, 3, 4, 5]


def test_run_search_sends_blob_scope_and_verbatim_query(make_searcher) -> None:
    gl = FakeGitlab()
    query = 'def main( "a b" filename:*.py'

    make_searcher(gl).run_search(query, _projects(1))

    (call,) = gl.projects.search_calls
    assert call["scope"] == "blobs"
    assert call["search"] == query
    assert call["per_page"] == 100
    assert call["page"] == 1


def test_failing_project_does_not_affect_the_others(make_searcher) -> None:
    def search(pid: int, query: str):
        if pid == 3:
            raise gitlab.exceptions.GitlabSearchError("500 Internal Server Error", response_code=500)
        return [make_hit(pid)]

    result = make_searcher(FakeGitlab(search_fn=search)).run_search("TODO", _projects(6))

    assert len(result.outcomes) == 6
    assert [o.project.id for o in result.failed] == [3]
    assert result.failed[0].error.kind == "http"
    assert "500" in result.failed[0].error.message
    assert [o.project.id for o in result.succeeded] == [1, 2, 4, 5, 6]
    assert result.total_matches == 5


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (requests.exceptions.ReadTimeout("read timed out"), "timeout"),
        (requests.exceptions.ConnectionError("reset by peer"), "transport"),
        (RuntimeError("boom"), "unexpected"),
    ],
)
def test_failure_kinds(make_searcher, exc: Exception, kind: str) -> None:
    def search(pid: int, query: str):
        raise exc

    result = make_searcher(FakeGitlab(search_fn=search)).run_search("TODO", _projects(1))

    assert result.outcomes[0].error.kind == kind


def test_malformed_hit_is_a_decode_failure(make_searcher) -> None:
    gl = FakeGitlab(search_fn=lambda pid, query: [{"path": "x.py"}])

    result = make_searcher(gl).run_search("TODO", _projects(2))

    assert [o.error.kind for o in result.outcomes] == ["decode", "decode"]


def test_results_follow_project_order_not_completion_order(make_searcher) -> None:
    n = 6
    completed: list[int] = []

    def search(pid: int, query: str):
        time.sleep((n - pid) * 0.03)  # later projects finish first
        return [make_hit(pid, path=f"file_{pid}.py")]

    result = make_searcher(FakeGitlab(search_fn=search)).run_search(
        "TODO",
        _projects(n),
        max_workers=None,
        on_progress=lambda done, total, project: completed.append(project.id),
    )

    assert [m.project_id for m in result.matches] == [1, 2, 3, 4, 5, 6]
    assert sorted(completed) == [1, 2, 3, 4, 5, 6]
    assert completed[0] != 1


def test_bounded_pool_limits_concurrency(make_searcher) -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def search(pid: int, query: str):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return []

    result = make_searcher(FakeGitlab(search_fn=search)).run_search("TODO", _projects(12), max_workers=3)

    assert len(result.outcomes) == 12
    assert peak <= 3


def test_progress_counts_every_terminal_task(make_searcher) -> None:
    def search(pid: int, query: str):
        if pid % 2:
            raise requests.exceptions.ConnectionError("down")
        return []

    calls: list[tuple[int, int]] = []

    make_searcher(FakeGitlab(search_fn=search)).run_search(
        "TODO", _projects(4), on_progress=lambda done, total, project: calls.append((done, total))
    )

    assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]


def test_deadline_marks_unfinished_projects_as_failed(make_searcher) -> None:
    release = threading.Event()

    def search(pid: int, query: str):
        if pid == 2:
            release.wait(5)
        return [make_hit(pid)]

    try:
        result = make_searcher(FakeGitlab(search_fn=search)).run_search("TODO", _projects(3), deadline=0.3)
    finally:
        release.set()

    assert [o.ok for o in result.outcomes] == [True, False, True]
    assert result.outcomes[1].error.kind == "deadline"
    assert result.total_matches == 2


def test_empty_project_set_is_rejected(make_searcher) -> None:
    gl = FakeGitlab()

    with pytest.raises(NoProjectsError, match="No projects found"):
        make_searcher(gl).run_search("TODO", [])

    assert gl.projects.search_calls == []


def test_repeated_runs_give_equal_results(make_searcher) -> None:
    gl = FakeGitlab(search_fn=lambda pid, query: [make_hit(pid, startline=s) for s in range(pid)])
    searcher = make_searcher(gl)

    first = searcher.run_search("TODO", _projects(4))
    second = searcher.run_search("TODO", _projects(4))

    assert first == second


def test_search_end_to_end_with_one_project_timing_out(make_searcher) -> None:
    listed = [make_project(1), make_project(2), make_project(3)]

    def search(pid: int, query: str):
        assert query == "TODO"
        if pid == 2:
            raise requests.exceptions.ReadTimeout("timed out")
        return [make_hit(pid, path="a.py", startline=1), make_hit(pid, path="b.py", startline=20)]

    gl = FakeGitlab(page_source=paged(listed), search_fn=search)

    result = make_searcher(gl).search("TODO", search_all=True)

    assert result.total_matches == 4
    assert {m.project_id for m in result.matches} == {1, 3}
    assert [o.project.id for o in result.failed] == [2]
    assert result.failed[0].error.kind == "timeout"
    assert result.summary() == {"projects": 3, "failed": 1, "matches": 4}


def test_search_by_path_with_no_match_raises_no_projects(make_searcher) -> None:
    gl = FakeGitlab(page_source=paged([make_project(1, "a/b")]))

    with pytest.raises(NoProjectsError):
        make_searcher(gl).search("TODO", project="a/z")


def test_failing_progress_callback_does_not_lose_results(make_searcher) -> None:
    calls: list[int] = []

    def on_progress(done: int, total: int, project: Project) -> None:
        calls.append(done)
        raise RuntimeError("display broke")

    gl = FakeGitlab(search_fn=lambda pid, query: [make_hit(pid)])

    result = make_searcher(gl).run_search("TODO", _projects(3), on_progress=on_progress)

    assert [o.project.id for o in result.outcomes] == [1, 2, 3]
    assert all(o.ok for o in result.outcomes)
    assert calls == [1, 2, 3]


def test_undecodable_response_is_a_decode_failure(make_searcher) -> None:
    def search(pid: int, query: str):
        raise gitlab.exceptions.GitlabParsingError("Failed to parse the server message")

    result = make_searcher(FakeGitlab(search_fn=search)).run_search("TODO", _projects(1))

    assert result.outcomes[0].error.kind == "decode"


def test_request_timeout_is_capped_by_the_deadline(make_searcher) -> None:
    gl = FakeGitlab()

    make_searcher(gl, timeout=30).run_search("TODO", _projects(2), deadline=2)
    make_searcher(gl, timeout=30).run_search("TODO", _projects(1))

    timeouts = [c["timeout"] for c in gl.projects.search_calls]
    assert all(0 < t <= 2 for t in timeouts[:2])
    assert timeouts[2] == 30


def test_deadline_bounds_process_lifetime() -> None:
    script = textwrap.dedent(
        """
        import time
        from types import SimpleNamespace

        from gls.models import Project
        from gls.registry import Instance
        from gls.searcher import GitlabSearcher


        class StuckProject:
            def search(self, scope, search, **kwargs):
                time.sleep(10)
                return []


        gl = SimpleNamespace(projects=SimpleNamespace(get=lambda pid, lazy=False: StuckProject()))
        searcher = GitlabSearcher(Instance("w", "https://g", "t"), gl=gl, show_progress=False)
        result = searcher.run_search("TODO", [Project(id=1)], deadline=0.2)
        print(result.outcomes[0].error.kind)
        """
    )
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [ROOT, os.environ.get("PYTHONPATH")]))}

    start = time.monotonic()
    proc = subprocess.run(
        [sys.executable, "-c", script],
        cwd=ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )
    elapsed = time.monotonic() - start

    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.strip() == "deadline"
    assert elapsed < 8
