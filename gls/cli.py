from __future__ import annotations

import argparse
from dataclasses import dataclass

from gls.searcher import DEFAULT_MAX_WORKERS, DEFAULT_TIMEOUT


def positive_float(value: str) -> float:
    """argparse type for strictly positive numbers of seconds."""
    try:
        v = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a number, got {value!r}.") from None
    if v <= 0:
        raise argparse.ArgumentTypeError("Use a positive number of seconds (e.g., 30).")
    return v


def non_negative_int(value: str) -> int:
    """
    Parse the --workers value.

    Supported values:
        - positive integer: size of the worker pool.
        - 0: one worker per project (no cap).
    """
    v = value.strip()
    if v.isdigit():
        return int(v)
    raise argparse.ArgumentTypeError("Use a non-negative integer (0 = one worker per project).")


@dataclass(frozen=True, slots=True)
class CliArgs:
    mode: str

    config: str | None
    timeout: float
    proxy: str | None
    log_level: str
    log_file: str | None

    # config
    name: str | None = None
    url: str | None = None
    token: str | None = None
    list_instances: bool = False

    # projects / search
    instance: str | None = None
    archived: bool = False

    query: str | None = None
    project: str | None = None
    all_projects: bool = False
    workers: int | None = DEFAULT_MAX_WORKERS
    deadline: float | None = None
    output: str | None = None
    progress: bool = True


class CliParser:
    """Argument parser builder for the gitlab-search CLI."""

    @staticmethod
    def build() -> argparse.ArgumentParser:
        """
        Construct the argument parser.

        Global options (registry location, transport, logging) come before
        the sub-command:
            - config: manage configured GitLab instances.
            - projects: list member projects of an instance.
            - search: search code across projects of an instance.
        """
        parser = argparse.ArgumentParser(
            prog="gitlab-search",
            description="Search code across many projects of a GitLab instance.",
        )

        parser.add_argument(
            "-c", "--config",
            default=None,
            help="Path to the instances config file (default: ~/.config/gitlab-search-cli/config.json).",
        )
        parser.add_argument(
            "--timeout",
            type=positive_float,
            default=DEFAULT_TIMEOUT,
            help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT}).",
        )
        parser.add_argument(
            "-x", "--proxy",
            default=None,
            help="HTTP(S) proxy URL for GitLab API traffic (e.g., http://127.0.0.1:8080).",
        )
        parser.add_argument(
            "--log-level",
            default="WARNING",
            choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
            type=str.upper,
            help="Logging level (default: WARNING).",
        )
        parser.add_argument("--log-file", default=None, help="Also write log records to this file.")

        sub = parser.add_subparsers(dest="mode", required=True, metavar="COMMAND")

        # ---- config ----
        cfg = sub.add_parser("config", help="Configure GitLab instances.")
        cfg.add_argument("-n", "--name", default=None, help="GitLab instance name.")
        cfg.add_argument("-u", "--url", default=None, help="GitLab URL (e.g., https://gitlab.example.com).")
        cfg.add_argument("-t", "--token", default=None, help="GitLab API token with read_api permissions.")
        cfg.add_argument(
            "-l", "--list",
            dest="list_instances",
            action="store_true",
            help="List all configured GitLab instances.",
        )

        # ---- projects ----
        prj = sub.add_parser("projects", help="List projects in a GitLab instance.")
        prj.add_argument("-i", "--instance", default=None, help="GitLab instance name (default: first configured).")
        prj.add_argument("-a", "--archived", action="store_true", help="Include archived projects.")

        # ---- search ----
        srch = sub.add_parser("search", help="Search for code in GitLab projects.")
        srch.add_argument("-q", "--query", required=True, help="Search query.")
        srch.add_argument("-i", "--instance", default=None, help="GitLab instance name (default: first configured).")

        scope = srch.add_mutually_exclusive_group()
        scope.add_argument("-p", "--project", default=None, help="Project ID or path with namespace.")
        scope.add_argument(
            "-a", "--all-projects",
            action="store_true",
            help="Search in all member projects (may be slow).",
        )

        srch.add_argument(
            "-w", "--workers",
            type=non_negative_int,
            default=DEFAULT_MAX_WORKERS,
            help=f"Concurrent searches (default: {DEFAULT_MAX_WORKERS}; 0 = one per project).",
        )
        srch.add_argument(
            "--deadline",
            type=positive_float,
            default=None,
            help="Overall time limit for the search in seconds; unfinished projects are reported as failed.",
        )
        srch.add_argument("-o", "--output", default=None, help="Also write results to this JSONL file.")
        srch.add_argument("--no-progress", action="store_true", help="Do not display progress bars.")

        return parser

    @classmethod
    def parse(cls, argv: list[str] | None = None) -> CliArgs:
        """
        Parse CLI arguments into a CliArgs instance.

        `--workers 0` is normalized to None (one worker per project).
        """
        ns = cls.build().parse_args(argv)

        common = {
            "mode": ns.mode,
            "config": ns.config,
            "timeout": ns.timeout,
            "proxy": ns.proxy,
            "log_level": ns.log_level,
            "log_file": ns.log_file,
        }

        match ns.mode:
            case "config":
                return CliArgs(
                    **common,
                    name=ns.name,
                    url=ns.url,
                    token=ns.token,
                    list_instances=ns.list_instances,
                )
            case "projects":
                return CliArgs(**common, instance=ns.instance, archived=ns.archived)
            case _:
                return CliArgs(
                    **common,
                    instance=ns.instance,
                    query=ns.query,
                    project=ns.project,
                    all_projects=ns.all_projects,
                    workers=ns.workers or None,
                    deadline=ns.deadline,
                    output=ns.output,
                    progress=not ns.no_progress,
                )
