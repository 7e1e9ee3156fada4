"""Counterparty account resolution.

An account is matched by its natural key: a case-insensitive name match or
an exact contact match (phone for customers, GST number for distributors).
When several accounts match, the first one in collection order wins. Two
real-world parties sharing a name are therefore merged; this is accepted
until a disambiguation step exists upstream.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Iterable, Optional

from . import log
from .constants import WALK_IN_CUSTOMER, AccountKind
from .data_manager import Account
from .matching import normalize, same_contact


ACCOUNT_ID_PREFIXES = {
    AccountKind.CUSTOMER: "CUST",
    AccountKind.DISTRIBUTOR: "DIST",
}


@dataclass(frozen=True)
class Resolution:
    """Outcome of :func:`resolve_account`; ``account`` is ``None`` for walk-ins."""

    account: Optional[Account]
    is_new: bool


def generate_account_id(kind: AccountKind, *, when: Optional[datetime] = None) -> str:
    """Return an id such as ``CUST-20240105093000123456-1a2b3c``.

    The random suffix keeps ids distinct when several accounts are created
    within the same clock tick, as bulk openings do.
    """
    when = when or datetime.now(UTC)
    return f"{ACCOUNT_ID_PREFIXES[kind]}-{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def find_account(
    kind: AccountKind,
    name: Optional[str],
    contact: Optional[str],
    accounts: Iterable[Account],
) -> Optional[Account]:
    """Return the first account of ``kind`` matching by name or contact."""

    wanted = normalize(name)
    for account in accounts:
        if account.kind is not kind:
            continue
        if wanted and normalize(account.name) == wanted:
            return account
        if same_contact(account.contact, contact):
            return account
    return None


def should_create(kind: AccountKind, name: Optional[str], contact: Optional[str], *, walk_in_name: str = WALK_IN_CUSTOMER) -> bool:
    """Decide whether an unmatched reference warrants a new account.

    Distributors are always created. Customers are created unless the name is
    the literal walk-in placeholder and no phone number was given.
    """

    if kind is AccountKind.DISTRIBUTOR:
        return True
    return (name or "") != walk_in_name or bool(contact)


def resolve_account(
    kind: AccountKind,
    name: Optional[str],
    contact: Optional[str],
    accounts: Iterable[Account],
    *,
    walk_in_name: str = WALK_IN_CUSTOMER,
    id_factory: Optional[Callable[[AccountKind], str]] = None,
) -> Resolution:
    """Find or lazily create the account an event refers to.

    Args:
        kind (AccountKind): Customer or distributor.
        name (str | None): Name as entered on the event.
        contact (str | None): Phone (customers) or GST number (distributors).
        accounts (Iterable[Account]): Existing accounts to search.
        walk_in_name (str): Placeholder customer name that never creates an
            account on its own.
        id_factory (Callable | None): Override for new account identifiers.

    Returns:
        Resolution: The matched account with ``is_new=False``, a freshly
            built (not yet stored) account with ``is_new=True``, or no
            account when a walk-in sale needs no linkage.
    """

    existing = find_account(kind, name, contact, accounts)
    if existing is not None:
        return Resolution(existing, False)

    if not should_create(kind, name, contact, walk_in_name=walk_in_name):
        log.debug("Walk-in customer without phone; no account linked")
        return Resolution(None, False)

    account_id = id_factory(kind) if id_factory is not None else generate_account_id(kind)
    trimmed = (name or "").strip()
    if kind is AccountKind.CUSTOMER:
        account = Account(account_id=account_id, kind=kind, name=trimmed, phone=contact or None)
    else:
        account = Account(account_id=account_id, kind=kind, name=trimmed, gst_number=contact or None)
    log.info("Created %s account '%s' for '%s'", kind.value, account_id, trimmed)
    return Resolution(account, True)
