# gls/resolver.py
from __future__ import annotations

from collections.abc import Callable, Sequence

from gls.exceptions import UsageError
from gls.models import Project

ListProjects = Callable[[bool], Sequence[Project]]  # include_archived -> projects


def parse_project_id(identifier: str) -> int | None:
    """
    Interpret a project identifier as a numeric GitLab project ID.

    Positive decimal integers qualify, with an optional leading "+" ("42",
    "+42"). Zero, negative numbers and anything else return None so the
    caller treats the identifier as a path.

    Args:
        identifier: Raw value of --project.

    Returns:
        The project ID, or None if `identifier` is not a positive integer.
    """
    v = identifier.strip()
    digits = v[1:] if v.startswith("+") else v
    if digits.isascii() and digits.isdigit() and int(digits) > 0:
        return int(digits)
    return None


def filter_by_path(projects: Sequence[Project], path_with_namespace: str) -> list[Project]:
    """Keep projects whose path_with_namespace equals `path_with_namespace` exactly."""
    return [p for p in projects if p.path_with_namespace == path_with_namespace]


def resolve_projects(
        identifier: str | None,
        search_all: bool,
        list_projects: ListProjects,
) -> list[Project]:
    """
    Turn the user's project selection into the concrete list of projects to search.

    Rules, first match wins:

    - positive integer -> one synthetic project with that ID, no API call
      (an unknown ID only shows up later as that project's search failure);
    - non-empty string -> non-archived member projects with exactly that
      path_with_namespace (possibly none);
    - `search_all` -> every non-archived member project;
    - otherwise -> UsageError.

    An empty result is returned as-is; rejecting it is the caller's job.

    Raises:
        UsageError: Neither an identifier nor `search_all` was given.
        ProjectListingError: Propagated from `list_projects`.
    """
    if identifier:
        project_id = parse_project_id(identifier)
        if project_id is not None:
            return [Project.synthetic(project_id)]
        return filter_by_path(list_projects(False), identifier)

    if search_all:
        return list(list_projects(False))

    raise UsageError(
        "You must specify a project with --project or use --all-projects to search in all projects"
    )
