from __future__ import annotations

from ..models.import_result import RunResult

"""SUMMARY line rendering.

Format:
SUMMARY files={n}/{n} success={s} partial={p} failed={f} entities={e}
matched={m} unmatched={u} entries={w} unresolved_columns={c}
derivations_skipped={d} record_failures={r} elapsed_sec={t}
(one line, single spaces)
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Integers without a fraction, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: RunResult) -> str:
    total = len(result.files)
    files = result.files
    return (
        f"SUMMARY files={total}/{total} "
        f"success={result.success_files} "
        f"partial={result.partial_files} "
        f"failed={result.failed_files} "
        f"entities={sum(f.entities for f in files)} "
        f"matched={sum(f.matched for f in files)} "
        f"unmatched={sum(len(f.unmatched) for f in files)} "
        f"entries={result.total_entries} "
        f"unresolved_columns={sum(f.unresolved_columns for f in files)} "
        f"derivations_skipped={sum(f.derivations_skipped for f in files)} "
        f"record_failures={sum(f.record_failures for f in files)} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
