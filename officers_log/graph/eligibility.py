"""Callback-target eligibility.

Used when building the callback offer and again at commit time against
live data, since the offered list may be stale by the time the player
answers.
"""

from __future__ import annotations

from typing import Optional


def is_callback_target_compatible(
    value_id: Optional[str],
    target_primary_value_id: Optional[str],
    is_completed_arc_end: bool = False,
) -> bool:
    """Whether a target log may be linked as a callback source for ``value_id``.

    - No value selected: unrestricted.
    - Completed arc ends are valid for every value.
    - A target with no recorded primary value is allowed.
    - Otherwise the target's primary value must match exactly.
    """
    vid = str(value_id or "")
    if not vid:
        return True
    if is_completed_arc_end is True:
        return True
    primary = str(target_primary_value_id or "")
    if not primary:
        return True
    return primary == vid
