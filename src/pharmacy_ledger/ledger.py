"""Running-balance calculation for account ledgers.

The calculator is a pure function over an unordered set of entries. Entries
are ordered by date; entries sharing a date keep the order in which they
were supplied, which is the order they were appended to the account. An
``openingBalance`` entry resets the running balance to its own
``debit - credit`` instead of accumulating onto earlier entries. A ledger is
expected to hold at most one such entry, placed first, but the rule is
applied as written wherever the entry lands.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Iterable, Tuple

from .constants import LedgerEntryType
from .data_manager import LedgerEntry


def entry_moment(entry: LedgerEntry) -> datetime:
    """Parse the entry's ISO date (or datetime) into a comparable value.

    Timezone-aware values are converted to naive UTC so they sort alongside
    plain dates.

    Raises:
        ValueError: If the entry date is not ISO-8601.
    """

    try:
        moment = datetime.fromisoformat(entry.date)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Ledger entry '{entry.entry_id}' has an invalid date: {entry.date!r}") from exc
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC).replace(tzinfo=None)
    return moment


def recalculate(entries: Iterable[LedgerEntry]) -> Tuple[LedgerEntry, ...]:
    """Return ``entries`` sorted by date and annotated with running balances.

    Args:
        entries (Iterable[LedgerEntry]): Entries of a single account in any
            order. Existing ``balance`` values are ignored.

    Returns:
        tuple[LedgerEntry, ...]: New entries in chronological order whose
            ``balance`` holds the running ``debit - credit`` total.

    Raises:
        ValueError: If an entry date cannot be parsed.
    """

    ordered = sorted(entries, key=entry_moment)
    running = Decimal("0")
    result = []
    for entry in ordered:
        if entry.entry_type is LedgerEntryType.OPENING_BALANCE:
            running = entry.debit - entry.credit
        else:
            running += entry.debit - entry.credit
        result.append(replace(entry, balance=running))
    return tuple(result)
