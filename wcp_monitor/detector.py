"""New-product detection."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .scraper import ProductRecord


def find_new_products(
    current: Sequence[ProductRecord],
    known: Iterable[ProductRecord],
) -> List[ProductRecord]:
    """Return the records in `current` whose name is not in `known`.

    Names are compared exactly (case-sensitive). Output keeps the order of
    `current`; a name listed twice counts once. Neither input is modified.
    """
    seen = {r.name for r in known}
    new: list[ProductRecord] = []
    for record in current:
        if record.name in seen:
            continue
        seen.add(record.name)
        new.append(record)
    return new


__all__ = ["find_new_products"]
