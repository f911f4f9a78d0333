# gls/render.py
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import IO, Any

from gls.models import AggregateResult, ProjectOutcome, SearchMatch


def _write_jsonl_line(fp: IO[str], record: dict[str, Any]) -> None:
    """Write a JSONL record to an open file."""
    fp.write(json.dumps(record, ensure_ascii=False) + "\n")


def render_match(match: SearchMatch) -> str:
    lines = [f"\n{match.project_display_name} - {match.file_path}:{match.start_line}"]
    lines.extend(f"{n}: {text}" for n, text in match.numbered_lines())
    return "\n".join(lines)


def render_aggregate(result: AggregateResult, fp: IO[str]) -> None:
    """
    Print matches grouped by project, in project resolution order.

    Failed projects are listed after the matches.
    """
    fp.write(f"\nFound {result.total_matches} results:\n")
    for match in result.matches:
        fp.write(render_match(match) + "\n")

    failed = result.failed
    if failed:
        fp.write(f"\n{len(failed)} of {len(result.outcomes)} projects failed:\n")
        for o in failed:
            fp.write(f"Failed: {o.project.label}: {o.error.message}\n")


def _outcome_record(outcome: ProjectOutcome) -> dict[str, Any]:
    p = outcome.project
    rec: dict[str, Any] = {
        "type": "project",
        "project_id": p.id,
        "path_with_namespace": p.path_with_namespace,
        "web_url": p.web_url,
        "status": "ok" if outcome.ok else "error",
    }
    if outcome.error is not None:
        rec["error"] = {"kind": outcome.error.kind, "message": outcome.error.message}
    else:
        rec["matches"] = [
            {
                "file_path": m.file_path,
                "start_line": m.start_line,
                "ref": m.ref,
                "data": m.matched_text,
            }
            for m in outcome.matches
        ]
    return rec


def write_jsonl(result: AggregateResult, fp: IO[str], meta: dict[str, Any] | None = None) -> None:
    """
    Write the aggregate as JSONL: a meta line, one line per project, a summary line.
    """
    _write_jsonl_line(
        fp,
        {
            "type": "meta",
            "timestamp_utc": datetime.now(UTC).isoformat(),
            "query": result.query,
            **(meta or {}),
        },
    )
    for outcome in result.outcomes:
        _write_jsonl_line(fp, _outcome_record(outcome))
    _write_jsonl_line(fp, {"type": "summary", **result.summary()})
