# gls/searcher.py
from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, as_completed
from typing import Any
from urllib.parse import urlparse

import gitlab.exceptions
import requests.exceptions
from gitlab import Gitlab
from gitlab.const import SearchScope
from requests import Session
from tqdm import tqdm

from gls.exceptions import ConnectionCheckError, NoProjectsError, ProjectListingError
from gls.models import AggregateResult, Project, ProjectOutcome, SearchFailure, SearchMatch
from gls.registry import Instance
from gls.resolver import resolve_projects
from gls.utils import logging_utils, terminal_utils

LIST_PER_PAGE = 50
SEARCH_PER_PAGE = 100
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_WORKERS = 10
MIN_REQUEST_TIMEOUT = 0.05

ProgressCallback = Callable[[int, int, Project], None]  # (done, total, last completed project)


class GitlabSearcher:
    """Multi-project code search against a single GitLab instance.

    The searcher owns one python-gitlab client (and therefore one requests
    connection pool) shared by every concurrent search task, and provides:
    - paged listing of member projects
    - resolution of the user's project selection
    - per-project blob search
    - the concurrent fan-out/fan-in over the resolved projects
    """

    def __init__(
            self,
            instance: Instance,
            *,
            gl: Gitlab | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            proxy: str | None = None,
            ssl_verify: bool = True,
            show_progress: bool = True,
            log_level: int | str = "WARNING",
            log_file: str | None = None,
    ) -> None:
        self.instance = instance
        self.timeout = timeout
        self.proxy = proxy
        self.show_progress = show_progress

        self.log_level: int = logging_utils.coerce_log_level(log_level)
        self.logger = logging_utils.build_logger(level=self.log_level, log_file=log_file)

        self._gl: Gitlab = gl if gl is not None else self._get_gl_client(ssl_verify=ssl_verify)

    @staticmethod
    def _normalize_proxy(proxy: str) -> str:
        p = proxy.strip()
        if not p:
            return p
        if "://" not in p:
            p = f"http://{p}"
        parsed = urlparse(p)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid proxy URL: {proxy!r}. Example: http://127.0.0.1:8080")
        return p

    def _get_gl_client(self, ssl_verify: bool = True) -> Gitlab:
        """
        Create (but do not authenticate) a GitLab API client for the instance.

        The token is sent as PRIVATE-TOKEN on every request; no auth round-trip
        is made here so a search costs only the listing and search calls.

        Raises:
            ValueError: If the proxy URL is invalid.
        """
        self.logger.debug("Creating GitLab client for %s (%s)", self.instance.name, self.instance.api_url)

        kwargs: dict[str, Any] = {
            "url": self.instance.api_url,
            "private_token": self.instance.token,
            "timeout": self.timeout,
            "ssl_verify": ssl_verify,
        }

        if self.proxy:
            proxy = self._normalize_proxy(self.proxy)
            session = Session()
            session.proxies.update({"http": proxy, "https": proxy})
            kwargs["session"] = session

        if not ssl_verify:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        return Gitlab(**kwargs)

    def check_connection(self, allow_ssl_fallback: bool = True) -> tuple[str, str]:
        """
        Verify that the instance answers and the token is accepted.

        On a TLS failure the check is retried once with certificate
        verification disabled; the searcher keeps that client afterwards.

        Returns:
            (version, revision) reported by the server.

        Raises:
            ConnectionCheckError: The version endpoint could not be reached.
        """
        try:
            data = self._gl.http_get("/version")
        except requests.exceptions.SSLError as e:
            if not allow_ssl_fallback:
                raise ConnectionCheckError(f"TLS handshake failed for {self.instance.api_url}: {e}") from e
            self.logger.warning("TLS failed for %s; retrying with ssl_verify=False", self.instance.api_url)
            self._gl = self._get_gl_client(ssl_verify=False)
            return self.check_connection(allow_ssl_fallback=False)
        except (gitlab.exceptions.GitlabError, requests.exceptions.RequestException) as e:
            raise ConnectionCheckError(str(e) or type(e).__name__) from e

        if not isinstance(data, dict) or "version" not in data:
            raise ConnectionCheckError(f"Unexpected /version response from {self.instance.api_url}")
        return str(data["version"]), str(data.get("revision", ""))

    def list_projects(self, include_archived: bool = False, per_page: int = LIST_PER_PAGE) -> list[Project]:
        """
        Retrieve every project the token is a member of, walking pages until an empty one.

        Pages are requested in ascending id order. A page whose last project id
        equals the previous page's last id means the server is serving the same
        page again; that is reported instead of looping forever.

        Args:
            include_archived: If False, archived projects are filtered out server-side.
            per_page: Page size.

        Returns:
            Projects in server order.

        Raises:
            ProjectListingError: Any HTTP, transport or decoding error, or a repeated page.
                Nothing is returned in that case.
        """
        params: dict[str, Any] = {
            "simple": "true",
            "membership": "true",
            "order_by": "id",
            "sort": "asc",
        }
        if not include_archived:
            params["archived"] = "false"

        projects: list[Project] = []
        page = 1
        prev_last_id: int | None = None

        start = time.perf_counter()
        lay = terminal_utils.layout()
        base_desc = f"Listing instance: {self.instance.name}"

        with terminal_utils.mk_tqdm(
                total=None,
                layout_=lay,
                unit="projects",
                disable=not self.show_progress,
        ) as pbar:
            terminal_utils.set_desc(pbar, base_desc, lay)

            while True:
                try:
                    batch = self._gl.projects.list(page=page, per_page=per_page, **params)
                except (gitlab.exceptions.GitlabError, requests.exceptions.RequestException) as e:
                    self.logger.error("Gitlab API error while listing projects (page %s): %s", page, e)
                    raise ProjectListingError(f"Failed to list projects (page {page}): {e}") from e

                if not batch:
                    break

                try:
                    page_projects = [Project.from_api(p.attributes) for p in batch]
                except (KeyError, TypeError, ValueError) as e:
                    raise ProjectListingError(f"Malformed project in page {page}: {e!r}") from e

                last_id = page_projects[-1].id
                if last_id == prev_last_id:
                    raise ProjectListingError(
                        f"Server returned page {page} ending with the same project "
                        f"(ID: {last_id}) as page {page - 1}; aborting listing."
                    )
                prev_last_id = last_id

                projects.extend(page_projects)
                pbar.update(len(page_projects))
                terminal_utils.set_desc(
                    pbar,
                    terminal_utils.animate_desc(base_desc, terminal_utils.LIST_PROJECTS_ANIM_FRAMES, page),
                    lay,
                )
                page += 1

        elapsed = round(time.perf_counter() - start, 2)
        self.logger.info("Loaded %s projects in %s seconds (%s requests).", len(projects), elapsed, page)
        return projects

    def resolve_projects(self, identifier: str | None, search_all: bool = False) -> list[Project]:
        """Resolve --project / --all-projects into projects. See gls.resolver.resolve_projects."""
        return resolve_projects(identifier, search_all, self.list_projects)

    def search_blobs(
            self,
            project: Project,
            query: str,
            per_page: int = SEARCH_PER_PAGE,
            timeout: float | None = None,
    ) -> list[SearchMatch]:
        """
        Run one blob search inside a project.

        Only the first page (at most 100 hits) is fetched. The query is passed
        through unchanged.

        Args:
            timeout: Request timeout for this call; defaults to the client timeout.

        Raises:
            gitlab.exceptions.GitlabError: Non-success HTTP status or undecodable body.
            requests.exceptions.RequestException: Transport failure or timeout.
            KeyError, TypeError, ValueError: A hit could not be decoded.
        """
        raw = self._gl.projects.get(project.id, lazy=True).search(
            SearchScope.BLOBS,
            query,
            page=1,
            per_page=min(per_page, SEARCH_PER_PAGE),
            timeout=timeout or self.timeout,
        )
        return [SearchMatch.from_api(x, project) for x in raw]

    def _search_task(self, project: Project, query: str, deadline_at: float | None = None) -> ProjectOutcome:
        """Search one project. Never raises: failures become the project's outcome."""
        timeout = self.timeout
        if deadline_at is not None:
            timeout = min(timeout, max(deadline_at - time.monotonic(), MIN_REQUEST_TIMEOUT))

        try:
            matches = self.search_blobs(project, query, timeout=timeout)
        except gitlab.exceptions.GitlabParsingError as e:
            failure = SearchFailure("decode", f"undecodable response: {e}")
        except gitlab.exceptions.GitlabError as e:
            failure = SearchFailure("http", str(e) or type(e).__name__)
        except requests.exceptions.Timeout as e:
            failure = SearchFailure("timeout", f"request timed out after {round(timeout, 2)}s ({e})")
        except requests.exceptions.RequestException as e:
            failure = SearchFailure("transport", str(e) or type(e).__name__)
        except (KeyError, TypeError, ValueError) as e:
            failure = SearchFailure("decode", f"malformed search result: {e!r}")
        except Exception as e:
            self.logger.exception("Unexpected error searching in project %s", project.label)
            failure = SearchFailure("unexpected", repr(e))
        else:
            self.logger.debug("Project %s: %s match(es).", project.label, len(matches))
            return ProjectOutcome(project=project, matches=tuple(matches))

        self.logger.error("Error searching in project %s: %s", project.label, failure.message)
        return ProjectOutcome(project=project, error=failure)

    def _start_workers(
            self,
            query: str,
            projects: Sequence[Project],
            workers: int,
            deadline_at: float | None,
    ) -> list[Future[ProjectOutcome]]:
        """
        Start `workers` daemon threads draining a queue of project positions.

        Each position gets its own Future. Workers are daemon threads so a
        request still in flight when the deadline passes never keeps the
        process alive; cancelled futures are skipped without a request.
        """
        futures: list[Future[ProjectOutcome]] = [Future() for _ in projects]
        pending: queue.SimpleQueue[int] = queue.SimpleQueue()
        for idx in range(len(projects)):
            pending.put(idx)

        def worker() -> None:
            while True:
                try:
                    idx = pending.get_nowait()
                except queue.Empty:
                    return
                fut = futures[idx]
                if fut.set_running_or_notify_cancel():
                    fut.set_result(self._search_task(projects[idx], query, deadline_at))

        for n in range(workers):
            threading.Thread(target=worker, name=f"gls-search-{n}", daemon=True).start()
        return futures

    def _report_progress(
            self,
            pbar: tqdm,
            lay: terminal_utils.TqdmLayout,
            done: int,
            total: int,
            project: Project,
            on_progress: ProgressCallback | None,
    ) -> None:
        """Advance the bar and call `on_progress`. Failures here never affect the search."""
        try:
            pbar.update(1)
            terminal_utils.set_postfix(pbar, project.label, lay)
            if on_progress is not None:
                on_progress(done, total, project)
        except Exception:
            self.logger.warning("Progress reporting failed after project %s", project.label, exc_info=True)

    def run_search(
            self,
            query: str,
            projects: Sequence[Project],
            *,
            max_workers: int | None = DEFAULT_MAX_WORKERS,
            deadline: float | None = None,
            on_progress: ProgressCallback | None = None,
    ) -> AggregateResult:
        """
        Search `query` in every project concurrently and collect all outcomes.

        One task per project runs on a pool of worker threads. Each task's
        outcome goes into the slot of its project's position, so the result
        follows the order of `projects` whatever order the tasks finish in.
        A failing task only affects its own slot. Progress (bar and
        `on_progress`) is updated from this thread after each task reaches a
        terminal state; errors raised while reporting progress are logged
        and ignored.

        Args:
            query: Search string, passed verbatim.
            projects: Resolved projects, in the order results should be reported.
            max_workers: Pool size; None runs one worker per project.
            deadline: Overall limit in seconds. Request timeouts are capped at
                the time left; tasks unfinished at the deadline are recorded
                as failed and not waited for.
            on_progress: Called as (done, total, project) after each task.

        Returns:
            AggregateResult with exactly one outcome per project.

        Raises:
            NoProjectsError: `projects` is empty.
        """
        if not projects:
            raise NoProjectsError()

        total = len(projects)
        slots: list[ProjectOutcome | None] = [None] * total
        workers = min(max_workers or total, total)
        deadline_at = time.monotonic() + deadline if deadline is not None else None

        self.logger.info("Searching '%s' in %s projects with %s workers.", query, total, workers)

        lay = terminal_utils.layout()
        futures = self._start_workers(query, projects, workers, deadline_at)
        positions = {fut: idx for idx, fut in enumerate(futures)}
        done = 0
        try:
            with terminal_utils.mk_tqdm(
                    total=total,
                    layout_=lay,
                    unit="projects",
                    disable=not self.show_progress,
            ) as pbar:
                terminal_utils.set_desc(pbar, f"Searching: '{query}'", lay)

                try:
                    remaining = None if deadline_at is None else max(deadline_at - time.monotonic(), 0.0)
                    for fut in as_completed(futures, timeout=remaining):
                        idx = positions[fut]
                        slots[idx] = fut.result()
                        done += 1
                        self._report_progress(pbar, lay, done, total, projects[idx], on_progress)
                except TimeoutError:
                    self.logger.error(
                        "Search deadline of %ss exceeded: %s of %s projects did not finish.",
                        deadline, total - done, total,
                    )
        finally:
            for fut in futures:
                fut.cancel()

        outcomes: list[ProjectOutcome] = []
        for idx, slot in enumerate(slots):
            if slot is None:
                slot = ProjectOutcome(
                    project=projects[idx],
                    error=SearchFailure("deadline", f"search did not finish within {deadline}s"),
                )
            outcomes.append(slot)

        result = AggregateResult(query=query, outcomes=tuple(outcomes))
        self.logger.info(
            "Search finished: %s matches, %s of %s projects failed.",
            result.total_matches, len(result.failed), total,
        )
        return result

    def search(
            self,
            query: str,
            *,
            project: str | None = None,
            search_all: bool = False,
            max_workers: int | None = DEFAULT_MAX_WORKERS,
            deadline: float | None = None,
            on_progress: ProgressCallback | None = None,
    ) -> AggregateResult:
        """Resolve the project selection, then run the concurrent search over it."""
        projects = self.resolve_projects(project, search_all)
        return self.run_search(
            query,
            projects,
            max_workers=max_workers,
            deadline=deadline,
            on_progress=on_progress,
        )
