"""Three-way diff of cache snapshots."""

from typing import Mapping

from .cache import CacheChange, CacheEntry, ChangeType


def diff_snapshots(
    before: Mapping[str, CacheEntry], after: Mapping[str, CacheEntry]
) -> list[CacheChange]:
    """
    Compare two snapshots keyed by ``namespace/name``.

    Keys only in ``before`` are deleted, keys only in ``after`` are added,
    and keys in both whose phase or player count differ are modified. Other
    field changes are not reported. Diffing a snapshot against itself yields
    nothing.

    Returns:
        Changes ordered deletions first, then by key
    """
    changes = [
        CacheChange(ChangeType.DELETED, before[key], before[key])
        for key in sorted(before.keys() - after.keys())
    ]

    for key in sorted(after):
        entry = after[key]
        previous = before.get(key)
        if previous is None:
            changes.append(CacheChange(ChangeType.ADDED, entry))
        elif entry.differs(previous):
            changes.append(CacheChange(ChangeType.MODIFIED, entry, previous))

    return changes
