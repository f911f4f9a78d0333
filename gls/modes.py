# gls/modes.py
"""
Mode dispatcher for gitlab-search.

This module maps CLI arguments to concrete workflows:
- config: list instances, or add/update one and check connectivity
- projects: list member projects of an instance
- search: resolve projects, run the concurrent search, render results

The dispatcher is intentionally thin; core logic lives in GitlabSearcher.
Fatal conditions are raised as GitlabSearchError and turned into an exit
status by the entrypoint.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import IO

from gls.cli import CliArgs
from gls.exceptions import ConnectionCheckError, UsageError
from gls.registry import Instance, load_registry, save_registry
from gls.render import render_aggregate, write_jsonl
from gls.searcher import GitlabSearcher


def run_mode(args: CliArgs, out: IO[str] | None = None) -> None:
    """Dispatch execution based on args.mode."""
    out = out or sys.stdout
    match args.mode:
        case "config":
            _run_config(args, out)
        case "projects":
            _run_projects(args, out)
        case "search":
            _run_search(args, out)
        case _:
            raise UsageError(f"Unknown mode: {args.mode}")


def _config_path(args: CliArgs) -> Path | None:
    return Path(args.config).expanduser() if args.config else None


def _mk_searcher(args: CliArgs, instance: Instance) -> GitlabSearcher:
    """Create a GitlabSearcher for `instance` from CLI args."""
    try:
        return GitlabSearcher(
            instance,
            timeout=args.timeout,
            proxy=args.proxy,
            show_progress=args.progress,
            log_level=args.log_level,
            log_file=args.log_file,
        )
    except ValueError as e:
        raise UsageError(str(e)) from e


def _run_config(args: CliArgs, out: IO[str]) -> None:
    path = _config_path(args)
    registry = load_registry(path)

    if args.list_instances:
        print("Configured GitLab instances:", file=out)
        if not registry.instances:
            print("  No instances configured", file=out)
        for inst in registry.instances:
            print(f"  {inst.name} - {inst.url}", file=out)
        return

    if args.name and args.url and args.token:
        instance = Instance(name=args.name, url=args.url, token=args.token)
        added = registry.upsert(instance)
        save_registry(registry, path)
        print(f"{'Added new' if added else 'Updated'} GitLab instance: {instance.name}", file=out)

        # A failed check is reported, the saved configuration is kept.
        try:
            version, _ = _mk_searcher(args, instance).check_connection()
        except ConnectionCheckError as e:
            print(f"Failed to connect to GitLab instance: {instance.name} - Error: {e}", file=out)
        else:
            print(f"Successfully connected to GitLab instance: {instance.name} (version: {version})", file=out)
        return

    if args.name or args.url or args.token:
        print("To configure a GitLab instance, you must provide name, url, and token", file=out)
    else:
        print(
            "Use --list to see configured instances or provide --name, --url, and --token "
            "to add/update an instance",
            file=out,
        )


def _run_projects(args: CliArgs, out: IO[str]) -> None:
    instance = load_registry(_config_path(args)).select(args.instance)
    print(f"Fetching projects from GitLab instance: {instance.name}", file=out)

    projects = _mk_searcher(args, instance).list_projects(include_archived=args.archived)

    print(f"Found {len(projects)} projects:", file=out)
    for p in projects:
        print(f"  {p.label} (ID: {p.id}) - {p.web_url}", file=out)


def _run_search(args: CliArgs, out: IO[str]) -> None:
    """Resolve projects, fan the search out and print the aggregated matches."""
    instance = load_registry(_config_path(args)).select(args.instance)
    searcher = _mk_searcher(args, instance)

    print(f"Searching in GitLab instance: {instance.name}", file=out)
    if args.all_projects and not args.project:
        print("Fetching all projects...", file=out)

    projects = searcher.resolve_projects(args.project, args.all_projects)
    if projects:
        print(f"Searching for: {args.query}", file=out)
        print(f"Searching in {len(projects)} projects...", file=out)

    result = searcher.run_search(
        args.query,
        projects,
        max_workers=args.workers,
        deadline=args.deadline,
    )

    render_aggregate(result, out)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as fp:
            write_jsonl(
                result,
                fp,
                meta={
                    "instance": instance.name,
                    "url": instance.url,
                    "project": args.project,
                    "all_projects": args.all_projects,
                    "workers": args.workers,
                },
            )
        print(f"Results saved to: {output_path}", file=out)

    summary = result.summary()
    print(
        f"Done. Projects: {summary['projects']} | Failed: {summary['failed']} | Matches: {summary['matches']}",
        file=out,
    )
