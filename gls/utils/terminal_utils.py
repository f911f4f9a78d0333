# gls/utils/terminal_utils.py
from __future__ import annotations

import shutil
import textwrap
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from tqdm import tqdm

LIST_PROJECTS_ANIM_FRAMES: list[str] = ["📄", "📄📄", "📄📄📄", "🗂️", "🗄️"]


def term_cols(fallback: int = 120) -> int:
    """Return current terminal width in columns (best-effort)."""
    return shutil.get_terminal_size(fallback=(fallback, 20)).columns


def shorten(text: str, width: int) -> str:
    """Shorten text to fit `width` using an ellipsis placeholder."""
    if width <= 0:
        return ""
    return textwrap.shorten(str(text), width=width, placeholder="…")


def animate_desc(base: str, frames: Iterable[str], i: int) -> str:
    """Return animated description string for iteration index `i`."""
    frames_list = list(frames)
    if not frames_list:
        return base
    return f"{frames_list[i % len(frames_list)]} {base}"


@dataclass(frozen=True, slots=True)
class TqdmLayout:
    """Computed layout budgets for a single terminal width."""
    cols: int
    desc_w: int
    post_w: int


def layout(fallback_cols: int = 120) -> TqdmLayout:
    """Compute stable tqdm layout budgets from terminal width."""
    cols = term_cols(fallback=fallback_cols)
    desc_w = max(18, min(42, int(cols * 0.28)))
    post_w = max(12, min(36, int(cols * 0.25)))
    return TqdmLayout(cols=cols, desc_w=desc_w, post_w=post_w)


def bar_format_stable(lay: TqdmLayout) -> str:
    """
    Stable tqdm format where desc and postfix have fixed width.

    This prevents the progress bar from expanding/shrinking when desc/postfix length changes.
    """
    return (
        f"{{desc:<{lay.desc_w}}} "
        f"[{{elapsed}}<{{remaining}}]"
        f"{{percentage:3.0f}}% "
        f"{{bar}} "
        f"[{{n_fmt}}/{{total_fmt}}] "
        f"{{postfix}}"
    )


def bar_format_counter(lay: TqdmLayout) -> str:
    """Format for bars without a known total (page walking)."""
    return f"{{desc:<{lay.desc_w}}} [{{elapsed}}] {{n_fmt}} {{unit}}"


def mk_tqdm(
        *,
        total: int | None,
        position: int = 0,
        leave: bool = False,
        layout_: TqdmLayout | None = None,
        bar_format: str | None = None,
        **kwargs: Any,
) -> tqdm:
    """
    Create a tqdm progress bar with stable width.

    - Uses fixed ncols and disables dynamic_ncols to prevent jitter.
    - Uses a stable bar_format by default (counter format when total is unknown).
    """
    lay = layout_ or layout()
    if bar_format is None:
        bar_format = bar_format_stable(lay) if total is not None else bar_format_counter(lay)
    return tqdm(
        total=total,
        position=position,
        leave=leave,
        ncols=lay.cols,
        dynamic_ncols=False,
        bar_format=bar_format,
        **kwargs,
    )


def set_desc(pbar: tqdm, text: str, lay: TqdmLayout) -> None:
    """Set shortened description respecting computed layout width."""
    pbar.set_description_str(shorten(text, lay.desc_w), refresh=True)


def set_postfix(pbar: tqdm, text: str, lay: TqdmLayout) -> None:
    """Set shortened postfix respecting computed layout width."""
    pbar.set_postfix_str(shorten(text, lay.post_w), refresh=True)
