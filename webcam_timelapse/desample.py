"""Reduce timestamped image keys to an evenly time-distributed subset."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

import numpy as np

IMAGE_KEY_PATTERN = re.compile(r"^(\d+)\.[A-Za-z]+$")


def extract_timestamp_from_key(image_key: str) -> Optional[int]:
    """Return the Unix timestamp encoded as ``.../{digits}.{ext}``, or None."""
    if not image_key:
        return None
    filename = image_key.rsplit("/", 1)[-1]
    match = IMAGE_KEY_PATTERN.match(filename)
    if match is None:
        return None
    return int(match.group(1))


def _timestamped(source_keys: Sequence[str]) -> List[Tuple[int, str]]:
    items: List[Tuple[int, str]] = []
    seen = set()
    for key in source_keys:
        timestamp = extract_timestamp_from_key(key)
        if timestamp is None or key in seen:
            continue
        seen.add(key)
        items.append((timestamp, key))
    # Stable sort keeps source order among equal timestamps.
    items.sort(key=lambda item: item[0])
    return items


def desample(source_keys: Sequence[str], total_wanted: int) -> List[str]:
    """Pick at most ``total_wanted`` keys spread evenly across the time span.

    The earliest and latest keys are always kept. Intermediate slots take the
    key nearest to each evenly spaced target instant, preferring the earliest
    key on ties; a slot whose nearest key is already taken is skipped, so the
    result may be shorter than requested.
    """
    if total_wanted <= 0 or not source_keys:
        return []

    items = _timestamped(source_keys)
    if len(items) <= total_wanted:
        return [key for _, key in items]

    timestamps = np.array([timestamp for timestamp, _ in items], dtype=np.float64)
    first_ts = timestamps[0]
    span = timestamps[-1] - first_ts
    if span == 0:
        return [key for _, key in items[:total_wanted]]

    last_index = len(items) - 1
    if total_wanted == 1:
        return [items[0][1]]
    if total_wanted == 2:
        return [items[0][1], items[last_index][1]]

    selected = np.zeros(len(items), dtype=bool)
    selected[0] = True
    interval = span / (total_wanted - 1)

    for slot in range(1, total_wanted - 1):
        target = first_ts + slot * interval
        closest = int(np.argmin(np.abs(timestamps - target)))
        selected[closest] = True

    selected[last_index] = True
    return [key for (_, key), keep in zip(items, selected) if keep]


__all__ = ["IMAGE_KEY_PATTERN", "desample", "extract_timestamp_from_key"]
