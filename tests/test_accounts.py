"""Unit tests for counterparty resolution."""

from __future__ import annotations

from datetime import UTC, datetime

from pharmacy_ledger import accounts
from pharmacy_ledger.constants import AccountKind
from pharmacy_ledger.data_manager import Account


def _customer(account_id, name, phone=None):
    return Account(account_id=account_id, kind=AccountKind.CUSTOMER, name=name, phone=phone)


def _distributor(account_id, name, gst=None):
    return Account(account_id=account_id, kind=AccountKind.DISTRIBUTOR, name=name, gst_number=gst)


def test_find_account_matches_name_case_insensitively():
    existing = [_customer("C1", "Anita Rao")]

    assert accounts.find_account(AccountKind.CUSTOMER, "  anita rao ", None, existing) is existing[0]


def test_find_account_matches_by_phone():
    existing = [_customer("C1", "Anita Rao", phone="98450")]

    assert accounts.find_account(AccountKind.CUSTOMER, "A. Rao", "98450", existing) is existing[0]


def test_find_account_returns_first_match():
    existing = [_customer("C1", "Same Name"), _customer("C2", "same name")]

    assert accounts.find_account(AccountKind.CUSTOMER, "Same Name", None, existing).account_id == "C1"


def test_find_account_blank_phone_never_matches():
    existing = [_customer("C1", "Anita Rao")]

    assert accounts.find_account(AccountKind.CUSTOMER, "Someone", "", existing) is None


def test_distributor_matches_by_gst_number():
    existing = [_distributor("D1", "Acme Pharma", gst="29ABCDE")]

    found = accounts.find_account(AccountKind.DISTRIBUTOR, "ACME Distributors", "29ABCDE", existing)

    assert found is existing[0]


def test_resolve_returns_existing_without_creating():
    existing = [_customer("C1", "Anita Rao")]

    resolution = accounts.resolve_account(AccountKind.CUSTOMER, "Anita Rao", None, existing)

    assert resolution == accounts.Resolution(existing[0], False)


def test_resolve_creates_new_customer_with_phone():
    resolution = accounts.resolve_account(
        AccountKind.CUSTOMER, " Ravi ", "99999", [], id_factory=lambda kind: "CUST-1"
    )

    assert resolution.is_new
    assert resolution.account == Account(
        account_id="CUST-1", kind=AccountKind.CUSTOMER, name="Ravi", phone="99999"
    )


def test_walk_in_without_phone_links_nothing():
    resolution = accounts.resolve_account(AccountKind.CUSTOMER, "Walk-in Customer", None, [])

    assert resolution == accounts.Resolution(None, False)


def test_walk_in_with_phone_creates_account():
    resolution = accounts.resolve_account(AccountKind.CUSTOMER, "Walk-in Customer", "12345", [])

    assert resolution.is_new
    assert resolution.account.phone == "12345"


def test_unknown_distributor_is_always_created():
    resolution = accounts.resolve_account(AccountKind.DISTRIBUTOR, "New Supplier", "GST9", [])

    assert resolution.is_new
    assert resolution.account.kind is AccountKind.DISTRIBUTOR
    assert resolution.account.gst_number == "GST9"
    assert resolution.account.account_id.startswith("DIST-")


def test_generate_account_id_embeds_timestamp_and_is_unique():
    moment = datetime(2024, 1, 5, 9, 30, 0, 123456, tzinfo=UTC)

    first = accounts.generate_account_id(AccountKind.CUSTOMER, when=moment)
    second = accounts.generate_account_id(AccountKind.CUSTOMER, when=moment)

    assert first.startswith("CUST-20240105093000123456-")
    assert first != second
