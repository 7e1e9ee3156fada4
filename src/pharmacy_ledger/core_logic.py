"""Business logic layer for the pharmacy ledger.

This module contains the event processor. Each ``record_*`` function takes a
command describing one business event, mutates the in-memory
:class:`Repository` (counterparty accounts, inventory, and the event's
header record), and returns an :class:`EventResult` holding an immutable
:class:`Snapshot`. Persisting that snapshot is a separate call,
:func:`persist_snapshot`, which may fail without unwinding the in-memory
state.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from . import data_manager, log
from .accounts import generate_account_id, find_account, resolve_account
from .constants import (
    ACCOUNT_COLLECTIONS,
    EXPECTED_SCHEMA_VERSION,
    AccountKind,
    Collection,
    LedgerEntryType,
    PurchaseOrderStatus,
)
from .data_manager import (
    Account,
    InventoryItem,
    LedgerEntry,
    Purchase,
    PurchaseLine,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseReturn,
    PurchaseReturnLine,
    SaleLine,
    SalesReturn,
    SalesReturnLine,
    Transaction,
)
from .inventory import StockDelta, apply_identity_deltas, apply_intake_lines, list_low_stock
from .ledger import recalculate


ZERO = Decimal("0")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a person-initiated operation names an unknown account."""


class PartialCreationFailure(BusinessRuleViolation):
    """Raised after a freshly created account was rolled back.

    The account was created for the event but its first ledger append
    failed, so it was removed again rather than left with no history.
    """


class PersistenceFailure(RuntimeError):
    """Raised when one or more collections could not be written to the gateway."""

    def __init__(self, failed: List[str]) -> None:
        super().__init__(f"Failed to persist collections: {', '.join(failed)}")
        self.failed = failed


# ---------------------------------------------------------------------------
# Aggregate state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of every collection after an event."""

    transactions: Tuple[Transaction, ...] = ()
    inventory: Tuple[InventoryItem, ...] = ()
    sales_returns: Tuple[SalesReturn, ...] = ()
    purchase_returns: Tuple[PurchaseReturn, ...] = ()
    purchases: Tuple[Purchase, ...] = ()
    purchase_orders: Tuple[PurchaseOrder, ...] = ()
    distributors: Tuple[Account, ...] = ()
    customers: Tuple[Account, ...] = ()

    def collection(self, name: str) -> Tuple[Any, ...]:
        return getattr(self, COLLECTION_FIELDS[Collection(name)])


COLLECTION_FIELDS: Dict[Collection, str] = {
    Collection.TRANSACTIONS: "transactions",
    Collection.INVENTORY: "inventory",
    Collection.SALES_RETURNS: "sales_returns",
    Collection.PURCHASE_RETURNS: "purchase_returns",
    Collection.PURCHASES: "purchases",
    Collection.PURCHASE_ORDERS: "purchase_orders",
    Collection.DISTRIBUTORS: "distributors",
    Collection.CUSTOMERS: "customers",
}


@dataclass
class Repository:
    """Working in-memory state of a session; the authoritative copy."""

    transactions: List[Transaction] = field(default_factory=list)
    inventory: List[InventoryItem] = field(default_factory=list)
    sales_returns: List[SalesReturn] = field(default_factory=list)
    purchase_returns: List[PurchaseReturn] = field(default_factory=list)
    purchases: List[Purchase] = field(default_factory=list)
    purchase_orders: List[PurchaseOrder] = field(default_factory=list)
    distributors: List[Account] = field(default_factory=list)
    customers: List[Account] = field(default_factory=list)

    def snapshot(self) -> Snapshot:
        return Snapshot(**{name: tuple(getattr(self, name)) for name in COLLECTION_FIELDS.values()})

    def restore(self, snapshot: Snapshot) -> None:
        """Replace every collection with the contents of ``snapshot``."""
        for name in COLLECTION_FIELDS.values():
            setattr(self, name, list(getattr(snapshot, name)))

    def accounts(self, kind: AccountKind) -> List[Account]:
        return getattr(self, COLLECTION_FIELDS[ACCOUNT_COLLECTIONS[kind]])


@dataclass(frozen=True)
class RuntimeContext:
    """Container for settings, gateway and working state used by the BLL."""

    settings: data_manager.ConfigSettings
    repository: Repository
    gateway: Optional[data_manager.PersistenceGateway] = None
    _listeners: List[Callable[["EventResult"], None]] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class EventResult:
    """What an event produced: the header, the touched account, and the new state."""

    event: str
    snapshot: Snapshot
    header: Any = None
    account: Optional[Account] = None
    is_new_account: bool = False


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SaleCommand:
    """User intent for billing a sale."""

    customer_name: str
    items: Tuple[SaleLine, ...]
    total: Decimal
    amount_received: Decimal = ZERO
    customer_phone: Optional[str] = None
    date: Optional[str] = None
    invoice_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording a supplier bill."""

    supplier: str
    invoice_number: str
    items: Tuple[PurchaseLine, ...]
    total_amount: Decimal
    supplier_gst_number: Optional[str] = None
    purchase_order_id: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class SalesReturnCommand:
    original_invoice_id: str
    customer_name: str
    items: Tuple[SalesReturnLine, ...]
    total_refund: Decimal
    customer_id: Optional[str] = None
    date: Optional[str] = None
    return_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseReturnCommand:
    supplier: str
    items: Tuple[PurchaseReturnLine, ...]
    total_value: Decimal
    date: Optional[str] = None
    return_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentCommand:
    """Money received from a customer or paid to a distributor."""

    kind: AccountKind
    account_id: str
    amount: Decimal
    date: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class AccountOpeningCommand:
    """Explicit account creation with a signed opening balance.

    A positive ``opening_balance`` is owed by (customer) or to (distributor)
    the business and is recorded as a debit; a negative one as a credit.
    """

    kind: AccountKind
    name: str
    opening_balance: Decimal = ZERO
    as_of_date: Optional[str] = None
    phone: Optional[str] = None
    gst_number: Optional[str] = None


@dataclass(frozen=True)
class BulkAccountOpeningCommand:
    accounts: Tuple[AccountOpeningCommand, ...]


@dataclass(frozen=True)
class BulkIntakeCommand:
    """Stock lines produced by an importer, merged by name and batch."""

    items: Tuple[PurchaseLine, ...]


@dataclass(frozen=True)
class PurchaseOrderCommand:
    distributor_name: str
    items: Tuple[PurchaseOrderLine, ...]
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    date: Optional[str] = None


EventCommand = Union[
    SaleCommand,
    PurchaseCommand,
    SalesReturnCommand,
    PurchaseReturnCommand,
    PaymentCommand,
    AccountOpeningCommand,
    BulkAccountOpeningCommand,
    BulkIntakeCommand,
    PurchaseOrderCommand,
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_date(candidate: Optional[str]) -> str:
    """Return ``candidate`` or today's UTC date in ISO format."""
    return candidate if candidate else datetime.now(UTC).date().isoformat()


def generate_serial_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable, human-readable serial such as ``INV-20240105093000123456``.

    Microseconds are packed in so that records created within the same
    second stay distinct. A caller-supplied ``when`` makes identifiers
    deterministic for tests and migrations.
    """
    when = when or datetime.now(UTC)
    return f"{prefix}-{when.strftime('%Y%m%d%H%M%S%f')}"


def _store_account(repository: Repository, account: Account) -> None:
    accounts = repository.accounts(account.kind)
    for index, existing in enumerate(accounts):
        if existing.account_id == account.account_id:
            accounts[index] = account
            return
    accounts.append(account)


def _remove_account(repository: Repository, account: Account) -> None:
    accounts = repository.accounts(account.kind)
    accounts[:] = [existing for existing in accounts if existing.account_id != account.account_id]


def _post_entries(
    repository: Repository,
    account: Account,
    entries: List[LedgerEntry],
    *,
    is_new: bool,
    on_rollback: Optional[Callable[[], None]] = None,
) -> Account:
    """Append ``entries`` to ``account``, recalculate, and store the result.

    When ``is_new`` is set and the append fails, the account is removed from
    the repository, ``on_rollback`` runs, and :class:`PartialCreationFailure`
    is raised. Failures on existing accounts propagate unchanged.
    """

    try:
        ledger = recalculate([*account.ledger, *entries])
    except ValueError as exc:
        if not is_new:
            log.error("Ledger append failed for %s '%s': %s", account.kind.value, account.account_id, exc)
            raise
        _remove_account(repository, account)
        if on_rollback is not None:
            on_rollback()
        log.error(
            "Rolled back new %s account '%s' after ledger append failed: %s",
            account.kind.value,
            account.account_id,
            exc,
        )
        raise PartialCreationFailure(
            f"Could not create {account.kind.value} '{account.name}': {exc}"
        ) from exc

    updated = replace(account, ledger=ledger)
    _store_account(repository, updated)
    return updated


def _finish(
    context: RuntimeContext,
    event: str,
    *,
    header: Any = None,
    account: Optional[Account] = None,
    is_new_account: bool = False,
) -> EventResult:
    result = EventResult(
        event=event,
        snapshot=context.repository.snapshot(),
        header=header,
        account=account,
        is_new_account=is_new_account,
    )
    for listener in list(context._listeners):
        listener(result)
    return result


def add_listener(context: RuntimeContext, listener: Callable[[EventResult], None]) -> Callable[[], None]:
    """Subscribe ``listener`` to every applied event; returns an unsubscribe callable."""

    context._listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return _unsubscribe


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_repository(gateway: data_manager.PersistenceGateway) -> Repository:
    """Build a :class:`Repository` from every collection held by ``gateway``.

    Account ledgers are recalculated on load because persisted balances are
    derived values.
    """

    repository = Repository()
    for collection, attribute in COLLECTION_FIELDS.items():
        records = data_manager.deserialize_collection(collection.value, gateway.get(collection.value, []))
        if collection in (Collection.CUSTOMERS, Collection.DISTRIBUTORS):
            records = [replace(account, ledger=recalculate(account.ledger)) for account in records]
        setattr(repository, attribute, records)
    log.debug(
        "Loaded repository: %d inventory items, %d customers, %d distributors",
        len(repository.inventory),
        len(repository.customers),
        len(repository.distributors),
    )
    return repository


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    gateway: Optional[data_manager.PersistenceGateway] = None,
) -> RuntimeContext:
    """Load configuration, open the identity's gateway and hydrate the repository.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.
        gateway (PersistenceGateway | None): Gateway to use instead of the
            identity's workbook.

    Returns:
        RuntimeContext: Context ready for the ``record_*`` functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if gateway is None:
        gateway = data_manager.WorkbookGateway.for_settings(settings)
    repository = load_repository(gateway)
    log.info("Loaded runtime context for identity '%s'", settings.identity)
    return RuntimeContext(settings=settings, repository=repository, gateway=gateway)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that the configured schema matches ``EXPECTED_SCHEMA_VERSION``.

    Raises:
        RuntimeError: On mismatch.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def persist_snapshot(gateway: data_manager.PersistenceGateway, snapshot: Snapshot) -> None:
    """Write every collection of ``snapshot`` to ``gateway``.

    All collections are attempted even if one fails. Nothing is retried and
    the in-memory state is left untouched.

    Raises:
        PersistenceFailure: Listing the collections that could not be saved.
    """

    failed: List[str] = []
    for collection in Collection:
        rows = data_manager.serialize_collection(collection.value, snapshot.collection(collection.value))
        try:
            gateway.save(collection.value, rows)
        except Exception as exc:
            log.error("Failed to persist collection '%s': %s", collection.value, exc)
            failed.append(collection.value)
    if failed:
        raise PersistenceFailure(failed)
    log.info("Persisted snapshot (%d collections)", len(Collection))


def persist_context(context: RuntimeContext) -> None:
    """Persist the context's current state through its gateway."""
    if context.gateway is None:
        raise RuntimeError("Runtime context has no persistence gateway")
    persist_snapshot(context.gateway, context.repository.snapshot())


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Discard in-memory state and reload it from the gateway."""
    if context.gateway is None:
        raise RuntimeError("Runtime context has no persistence gateway")
    repository = load_repository(context.gateway)
    log.info("Reloaded state for identity '%s'", context.settings.identity)
    return RuntimeContext(settings=context.settings, repository=repository, gateway=context.gateway)


def export_backup(context: RuntimeContext) -> str:
    """Return the gateway's full snapshot as JSON text."""
    if context.gateway is None:
        raise RuntimeError("Runtime context has no persistence gateway")
    return data_manager.dump_snapshot(context.gateway.export_snapshot())


def import_backup(context: RuntimeContext, text: str) -> None:
    """Replace every stored collection from backup text and reload the repository.

    The backup is fully loaded, ledgers included, before the gateway is
    touched, so a rejected backup leaves both the store and the repository
    unchanged.

    Raises:
        ValueError: If ``text`` is not a valid snapshot document or one of
            its records cannot be read.
    """
    if context.gateway is None:
        raise RuntimeError("Runtime context has no persistence gateway")
    document = data_manager.load_snapshot(text)
    data_manager.validate_snapshot_records(document)
    staged = load_repository(data_manager.MemoryGateway(document["collections"]))
    context.gateway.import_snapshot(document)
    context.repository.restore(staged.snapshot())
    log.info("Restored backup for identity '%s'", context.settings.identity)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_accounts(context: RuntimeContext, kind: AccountKind) -> List[Account]:
    return list(context.repository.accounts(kind))


def get_account(context: RuntimeContext, kind: AccountKind, account_id: str) -> Account:
    """Resolve an account by identifier.

    Raises:
        MissingReferenceError: If no account of ``kind`` has ``account_id``.
    """
    for account in context.repository.accounts(kind):
        if account.account_id == account_id:
            return account
    log.warning("%s lookup failed for id '%s'", kind.value.capitalize(), account_id)
    raise MissingReferenceError(f"Unknown {kind.value} id: {account_id}")


def calculate_outstanding_balances(context: RuntimeContext, kind: AccountKind) -> Dict[str, Decimal]:
    """Map account id to current balance for accounts with a non-zero balance."""

    balances = {
        account.account_id: account.current_balance
        for account in context.repository.accounts(kind)
        if account.current_balance != ZERO
    }
    log.debug("Calculated %d outstanding %s balances", len(balances), kind.value)
    return balances


def calculate_stock_levels(context: RuntimeContext) -> Dict[str, int]:
    return {item.item_id: item.stock for item in context.repository.inventory}


def list_low_stock_items(context: RuntimeContext) -> List[InventoryItem]:
    return list_low_stock(context.repository.inventory)


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, command: SaleCommand) -> EventResult:
    """Bill a sale: decrement stock, create the invoice, and post to the customer.

    The customer is matched by name or phone. An unmatched customer is
    created unless the sale is to the walk-in placeholder with no phone, in
    which case the invoice carries no ``customer_id`` and no ledger is
    touched. A linked customer receives a ``sale`` debit for the total and,
    when money was received, a ``payment`` credit on the same date.

    Raises:
        PartialCreationFailure: If a customer created for this sale could not
            take its first ledger entries. The invoice and stock changes
            remain applied; only the customer is rolled back.
    """
    repository = context.repository
    date = _resolve_date(command.date)
    invoice_id = command.invoice_id or generate_serial_id("INV")

    resolution = resolve_account(
        AccountKind.CUSTOMER,
        command.customer_name,
        command.customer_phone,
        repository.customers,
        walk_in_name=context.settings.walk_in_customer,
    )
    customer = resolution.account
    if resolution.is_new and customer is not None:
        repository.customers.append(customer)

    transaction = Transaction(
        transaction_id=invoice_id,
        date=date,
        customer_name=command.customer_name,
        items=tuple(command.items),
        total=command.total,
        amount_received=command.amount_received,
        customer_phone=command.customer_phone,
        customer_id=customer.account_id if customer is not None else None,
    )
    repository.transactions.insert(0, transaction)

    repository.inventory = apply_identity_deltas(
        repository.inventory,
        [StockDelta(line.inventory_item_id, -line.quantity, line.unit) for line in command.items],
    )

    if customer is not None:
        entries = [
            LedgerEntry(
                entry_id=invoice_id,
                date=date,
                entry_type=LedgerEntryType.SALE,
                description=f"Sale - Invoice #{invoice_id}",
                debit=command.total,
                credit=ZERO,
            )
        ]
        if command.amount_received > ZERO:
            entries.append(
                LedgerEntry(
                    entry_id=f"PAY-{invoice_id}",
                    date=date,
                    entry_type=LedgerEntryType.PAYMENT,
                    description=f"Payment for Invoice #{invoice_id}",
                    debit=ZERO,
                    credit=command.amount_received,
                )
            )

        def _unlink() -> None:
            repository.transactions[:] = [
                replace(tx, customer_id=None) if tx.transaction_id == invoice_id else tx
                for tx in repository.transactions
            ]

        customer = _post_entries(
            repository, customer, entries, is_new=resolution.is_new, on_rollback=_unlink
        )

    log.info(
        "Recorded sale '%s' (customer=%s, total=%s, received=%s)",
        invoice_id,
        customer.account_id if customer is not None else "walk-in",
        command.total,
        command.amount_received,
    )
    return _finish(
        context, "sale", header=transaction, account=customer, is_new_account=resolution.is_new
    )


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> EventResult:
    """Record a supplier bill: stock in by name and batch, post to the distributor.

    Unknown distributors are always created. A linked purchase order is
    marked ``received``.

    Raises:
        BusinessRuleViolation: If the supplier name is blank.
        PartialCreationFailure: If a distributor created for this purchase
            could not take its ledger entry.
    """
    supplier = command.supplier.strip()
    if not supplier:
        raise BusinessRuleViolation("Supplier name cannot be empty")

    repository = context.repository
    date = _resolve_date(command.date)
    purchase = Purchase(
        purchase_id=str(uuid.uuid4()),
        serial_id=generate_serial_id("PUR"),
        supplier=supplier,
        invoice_number=command.invoice_number,
        date=date,
        items=tuple(command.items),
        total_amount=command.total_amount,
        purchase_order_id=command.purchase_order_id,
    )

    repository.inventory = apply_intake_lines(
        repository.inventory,
        command.items,
        default_min_stock=context.settings.min_stock_limit,
    )

    resolution = resolve_account(
        AccountKind.DISTRIBUTOR,
        supplier,
        command.supplier_gst_number,
        repository.distributors,
    )
    distributor = resolution.account
    if distributor is None:
        raise BusinessRuleViolation(f"Could not resolve distributor '{supplier}'")
    if resolution.is_new:
        repository.distributors.append(distributor)

    repository.purchases.insert(0, purchase)
    if command.purchase_order_id:
        _receive_purchase_order(repository, command.purchase_order_id)

    entry = LedgerEntry(
        entry_id=purchase.serial_id,
        date=date,
        entry_type=LedgerEntryType.PURCHASE,
        description=f"Purchase - Invoice #{command.invoice_number}",
        debit=command.total_amount,
        credit=ZERO,
    )
    distributor = _post_entries(repository, distributor, [entry], is_new=resolution.is_new)

    log.info(
        "Recorded purchase '%s' from '%s' (invoice=%s, amount=%s, lines=%d)",
        purchase.serial_id,
        supplier,
        command.invoice_number,
        command.total_amount,
        len(command.items),
    )
    return _finish(
        context, "purchase", header=purchase, account=distributor, is_new_account=resolution.is_new
    )


def _receive_purchase_order(repository: Repository, order_id: str) -> None:
    for index, order in enumerate(repository.purchase_orders):
        if order.order_id != order_id:
            continue
        if order.status is not PurchaseOrderStatus.ORDERED:
            log.warning(
                "Purchase order '%s' received from status '%s'", order_id, order.status.value
            )
        repository.purchase_orders[index] = replace(order, status=PurchaseOrderStatus.RECEIVED)
        log.info("Purchase order '%s' marked received", order_id)
        return
    log.warning("Purchase order '%s' not found; status unchanged", order_id)


def record_sales_return(context: RuntimeContext, command: SalesReturnCommand) -> EventResult:
    """Take goods back from a customer and credit the refund to their account.

    The customer is looked up by ``customer_id``; if it is absent or
    unknown the return is still recorded and stock still restored.
    """
    repository = context.repository
    date = _resolve_date(command.date)
    return_id = command.return_id or generate_serial_id("SR")

    sales_return = SalesReturn(
        return_id=return_id,
        date=date,
        original_invoice_id=command.original_invoice_id,
        customer_name=command.customer_name,
        items=tuple(command.items),
        total_refund=command.total_refund,
        customer_id=command.customer_id,
    )
    repository.sales_returns.insert(0, sales_return)

    repository.inventory = apply_identity_deltas(
        repository.inventory,
        [StockDelta(line.inventory_item_id, line.return_quantity, line.unit) for line in command.items],
    )

    customer = next(
        (account for account in repository.customers if account.account_id == command.customer_id),
        None,
    )
    if customer is not None:
        entry = LedgerEntry(
            entry_id=return_id,
            date=date,
            entry_type=LedgerEntryType.RETURN,
            description=f"Sales Return - Ref: {command.original_invoice_id}",
            debit=ZERO,
            credit=command.total_refund,
        )
        customer = _post_entries(repository, customer, [entry], is_new=False)
    else:
        log.debug("Sales return '%s' has no linked customer", return_id)

    log.info("Recorded sales return '%s' (refund=%s)", return_id, command.total_refund)
    return _finish(context, "sales_return", header=sales_return, account=customer)


def record_purchase_return(context: RuntimeContext, command: PurchaseReturnCommand) -> EventResult:
    """Send goods back to a supplier and credit their account.

    The distributor is matched by supplier name; no distributor is created.
    """
    repository = context.repository
    date = _resolve_date(command.date)
    return_id = command.return_id or generate_serial_id("DN")

    purchase_return = PurchaseReturn(
        return_id=return_id,
        date=date,
        supplier=command.supplier,
        items=tuple(command.items),
        total_value=command.total_value,
    )
    repository.purchase_returns.insert(0, purchase_return)

    repository.inventory = apply_identity_deltas(
        repository.inventory,
        [StockDelta(line.inventory_item_id, -line.return_quantity, line.unit) for line in command.items],
    )

    distributor = find_account(AccountKind.DISTRIBUTOR, command.supplier, None, repository.distributors)
    if distributor is not None:
        entry = LedgerEntry(
            entry_id=return_id,
            date=date,
            entry_type=LedgerEntryType.RETURN,
            description=f"Purchase Return - DN #{return_id}",
            debit=ZERO,
            credit=command.total_value,
        )
        distributor = _post_entries(repository, distributor, [entry], is_new=False)
    else:
        log.warning("Purchase return '%s': no distributor named '%s'", return_id, command.supplier)

    log.info("Recorded purchase return '%s' (value=%s)", return_id, command.total_value)
    return _finish(context, "purchase_return", header=purchase_return, account=distributor)


def record_payment(context: RuntimeContext, command: PaymentCommand) -> EventResult:
    """Credit a payment to an existing customer or distributor.

    Raises:
        MissingReferenceError: If the account does not exist. Nothing is
            changed in that case.
    """
    account = get_account(context, command.kind, command.account_id)
    date = _resolve_date(command.date)
    entry = LedgerEntry(
        entry_id=generate_serial_id("PAY"),
        date=date,
        entry_type=LedgerEntryType.PAYMENT,
        description=command.description or f"Payment - {account.name}",
        debit=ZERO,
        credit=command.amount,
    )
    account = _post_entries(context.repository, account, [entry], is_new=False)
    log.info(
        "Recorded payment of %s for %s '%s'", command.amount, command.kind.value, account.account_id
    )
    return _finish(context, "payment", account=account)


def _opening_entry(account_id: str, amount: Decimal, as_of_date: Optional[str]) -> LedgerEntry:
    return LedgerEntry(
        entry_id=f"OB-{account_id}",
        date=_resolve_date(as_of_date),
        entry_type=LedgerEntryType.OPENING_BALANCE,
        description="Opening Balance",
        debit=amount if amount > ZERO else ZERO,
        credit=-amount if amount < ZERO else ZERO,
    )


def _build_account(command: AccountOpeningCommand, account_id: str) -> Account:
    return Account(
        account_id=account_id,
        kind=command.kind,
        name=command.name.strip(),
        phone=command.phone or None,
        gst_number=command.gst_number or None,
    )


def record_account_opening(context: RuntimeContext, command: AccountOpeningCommand) -> EventResult:
    """Create an account, seeding its ledger with the opening balance.

    A zero opening balance creates the account with an empty ledger.

    Raises:
        PartialCreationFailure: If the opening entry could not be posted;
            the account is removed again.
    """
    repository = context.repository
    account = _build_account(command, generate_account_id(command.kind))
    repository.accounts(command.kind).append(account)

    if command.opening_balance != ZERO:
        entry = _opening_entry(account.account_id, command.opening_balance, command.as_of_date)
        account = _post_entries(repository, account, [entry], is_new=True)

    log.info(
        "Opened %s account '%s' (%s) with balance %s",
        command.kind.value,
        account.account_id,
        account.name,
        command.opening_balance,
    )
    return _finish(context, "account_opening", header=account, account=account, is_new_account=True)


def record_bulk_account_opening(context: RuntimeContext, command: BulkAccountOpeningCommand) -> EventResult:
    """Create several accounts at once, all or none.

    If any opening entry fails, every account created by this call is
    removed before :class:`PartialCreationFailure` propagates.
    """
    repository = context.repository
    created: List[Account] = []
    try:
        for opening in command.accounts:
            account_id = generate_account_id(opening.kind)
            account = _build_account(opening, account_id)
            repository.accounts(opening.kind).append(account)
            created.append(account)
            if opening.opening_balance != ZERO:
                entry = _opening_entry(account_id, opening.opening_balance, opening.as_of_date)
                created[-1] = _post_entries(repository, account, [entry], is_new=True)
    except PartialCreationFailure:
        for account in created:
            _remove_account(repository, account)
        log.error("Bulk account opening rolled back %d accounts", len(created))
        raise

    log.info("Opened %d accounts in bulk", len(created))
    return _finish(context, "bulk_account_opening", header=tuple(created), is_new_account=bool(created))


def record_bulk_intake(context: RuntimeContext, command: BulkIntakeCommand) -> EventResult:
    """Merge imported stock lines into inventory without touching any ledger."""
    repository = context.repository
    before = len(repository.inventory)
    repository.inventory = apply_intake_lines(
        repository.inventory,
        command.items,
        default_min_stock=context.settings.min_stock_limit,
    )
    log.info(
        "Imported %d stock lines (%d new items)",
        len(command.items),
        len(repository.inventory) - before,
    )
    return _finish(context, "bulk_intake")


def record_purchase_order(context: RuntimeContext, command: PurchaseOrderCommand) -> EventResult:
    """Create a purchase order, linking a known distributor when one matches."""
    repository = context.repository
    distributor = find_account(
        AccountKind.DISTRIBUTOR, command.distributor_name, None, repository.distributors
    )
    order = PurchaseOrder(
        order_id=generate_serial_id("PO"),
        distributor_name=command.distributor_name.strip(),
        date=_resolve_date(command.date),
        items=tuple(command.items),
        status=command.status,
        distributor_id=distributor.account_id if distributor is not None else None,
    )
    repository.purchase_orders.insert(0, order)
    log.info("Created purchase order '%s' (%s)", order.order_id, order.status.value)
    return _finish(context, "purchase_order", header=order, account=distributor)


def apply_event(context: RuntimeContext, command: EventCommand) -> EventResult:
    """Dispatch ``command`` to its ``record_*`` handler.

    Raises:
        BusinessRuleViolation: If the command type is not supported.
    """
    if isinstance(command, SaleCommand):
        return record_sale(context, command)
    if isinstance(command, PurchaseCommand):
        return record_purchase(context, command)
    if isinstance(command, SalesReturnCommand):
        return record_sales_return(context, command)
    if isinstance(command, PurchaseReturnCommand):
        return record_purchase_return(context, command)
    if isinstance(command, PaymentCommand):
        return record_payment(context, command)
    if isinstance(command, AccountOpeningCommand):
        return record_account_opening(context, command)
    if isinstance(command, BulkAccountOpeningCommand):
        return record_bulk_account_opening(context, command)
    if isinstance(command, BulkIntakeCommand):
        return record_bulk_intake(context, command)
    if isinstance(command, PurchaseOrderCommand):
        return record_purchase_order(context, command)
    raise BusinessRuleViolation(f"Unsupported command type: {type(command).__name__}")
