"""Befunge extension: per-command execution profile.

Counts how often each glyph executes and, when the program ends, writes a
histogram of the busiest commands to stderr. Counts stay available on the
interpreter as ``interpreter._profile_counts`` for drivers that want them.
"""

from __future__ import annotations

import sys
from collections import Counter
from typing import Any, List

from extensions import ExtensionAPI, StepContext

BEF_EXTENSION_NAME = "profile"
BEF_EXTENSION_API_VERSION = 1

TOP_N = 10
BAR_WIDTH = 40


def _counts(interpreter: Any) -> Counter:
    counts = getattr(interpreter, "_profile_counts", None)
    if counts is None:
        counts = Counter()
        setattr(interpreter, "_profile_counts", counts)
    return counts


def _on_start(interpreter: Any) -> None:
    _counts(interpreter).clear()


def _on_step(interpreter: Any, ctx: StepContext) -> None:
    _counts(interpreter)[ctx.glyph] += 1


def format_profile(counts: Counter, top_n: int = TOP_N) -> str:
    total = sum(counts.values())
    lines: List[str] = [f"profile: {total} steps"]
    if not total:
        return lines[0]
    busiest = counts.most_common(top_n)
    peak = busiest[0][1]
    for glyph, n in busiest:
        bar = "#" * max(1, n * BAR_WIDTH // peak)
        lines.append(f"  {glyph!r:>6} {n:>8} {bar}")
    return "\n".join(lines)


def _on_end(interpreter: Any, steps: int) -> None:
    print(format_profile(_counts(interpreter)), file=sys.stderr)


def bef_register(ext: ExtensionAPI) -> None:
    ext.metadata(name=BEF_EXTENSION_NAME, version="1.0.0")
    ext.on_event("program_start", _on_start)
    ext.every_n_steps(1, _on_step, name="profile_count")
    ext.on_event("program_end", _on_end)
