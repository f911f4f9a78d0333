"""
gls — GitLab code search package
================================

Search source code across many projects of a GitLab instance by fanning a
single query out to per-project blob searches and aggregating the results.

Modules
-------

registry
    Configured GitLab instances (name -> URL and token) stored as JSON.

searcher
    GitlabSearcher: paged project listing, project resolution, blob search
    and the concurrent search run.

resolver
    Rules turning --project / --all-projects into a list of projects.

models
    Project, SearchMatch and the aggregated search result.

render
    Terminal and JSONL output of search results.

cli, modes
    Argument parsing and command dispatch.

Typical usage
-------------

As a library:

    from gls import GitlabSearcher, Instance

    searcher = GitlabSearcher(Instance("work", "https://gitlab.example.com", "..."))
    result = searcher.search("TODO", search_all=True)
    for match in result.matches:
        print(match.project_display_name, match.file_path, match.start_line)

As a CLI:

    gitlab-search config --name work --url https://gitlab.example.com --token XXX
    gitlab-search search --query "TODO" --all-projects

"""

from .registry import Instance, Registry
from .searcher import GitlabSearcher

__all__ = [
    "GitlabSearcher",
    "Instance",
    "Registry",
]
