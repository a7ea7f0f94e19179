"""Snapshot diffing and content hashing for the case ledger.

The diff is deliberately positional, not a minimal edit script: lines are
paired by index after trimming, so an inserted line shows up as a run of
changed pairs below it. Audit displays depend on this exact output.
"""

from __future__ import annotations

import hashlib

NO_CHANGES = "No changes"
STRUCTURAL_CHANGES_ONLY = "Structural changes only"

SHORT_HASH_LENGTH = 12


def compute_content_hash(snapshot_text: str) -> str:
    """SHA-256 of the exact snapshot text, lowercase hex."""
    return hashlib.sha256(snapshot_text.encode("utf-8")).hexdigest()


def short_hash(content_hash: str) -> str:
    """Truncated hash for human-facing displays."""
    return content_hash[:SHORT_HASH_LENGTH]


def generate_simple_diff(old: str, new: str) -> str:
    """Line-by-line positional diff between two snapshots.

    Each differing line pair renders as ``- old`` (line removed), ``+ new``
    (line added) or ``- old`` followed by ``+ new`` (line changed).

    Returns:
        "No changes" for identical text, "Structural changes only" when the
        texts differ but every trimmed line pair matches, otherwise the
        rendered diff (one trailing newline per entry).
    """
    if old == new:
        return NO_CHANGES

    old_lines = old.split("\n")
    new_lines = new.split("\n")
    width = max(len(old_lines), len(new_lines))
    old_lines += [""] * (width - len(old_lines))
    new_lines += [""] * (width - len(new_lines))

    out: list[str] = []
    changes = 0
    for raw_old, raw_new in zip(old_lines, new_lines, strict=True):
        old_line = raw_old.strip()
        new_line = raw_new.strip()
        if old_line == new_line:
            continue
        if not new_line:
            out.append(f"- {old_line}\n")
        elif not old_line:
            out.append(f"+ {new_line}\n")
        else:
            out.append(f"- {old_line}\n+ {new_line}\n")
        changes += 1

    if changes == 0:
        return STRUCTURAL_CHANGES_ONLY
    return "".join(out)
