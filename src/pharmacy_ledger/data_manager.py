"""Data access layer for the pharmacy ledger.

This module owns everything that touches storage. Business rules belong in
:mod:`pharmacy_ledger.core_logic`.

The public API covers four responsibilities:

1. Records: the frozen dataclasses that make up the aggregates, together
   with their conversion to and from the persisted dictionary shape.
2. Configuration handling: finding and parsing ``config.ini``.
3. Workbook lifecycle: opening and persisting per-identity Excel files.
4. Persistence gateways: the :class:`PersistenceGateway` contract and its
   in-memory and workbook-backed implementations, including whole-store
   snapshot export and import.
"""


from __future__ import annotations

import configparser
import copy
import json
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import (
    ACCOUNT_COLLECTIONS,
    COLLECTION_SHEETS,
    DEFAULT_MIN_STOCK_LIMIT,
    EXPECTED_SCHEMA_VERSION,
    MANUAL_ITEM_PREFIX,
    WALK_IN_CUSTOMER,
    AccountKind,
    Collection,
    LedgerEntryType,
    PurchaseOrderStatus,
    RecordStatus,
    SheetName,
    StockUnit,
)


T = TypeVar("T")

CONFIG_FILE_NAME = "config.ini"
ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    pharmacy_name: str
    schema_version: str
    identity: str
    walk_in_customer: str = WALK_IN_CUSTOMER
    min_stock_limit: int = DEFAULT_MIN_STOCK_LIMIT

    @property
    def data_file(self) -> Path:
        """Workbook holding the collections of the configured identity."""
        return self.data_dir / f"{identity_slug(self.identity)}.xlsx"


@dataclass(frozen=True)
class InventoryItem:
    """One batch of a product held in stock, counted in loose units."""

    item_id: str
    name: str
    batch: str
    stock: int
    purchase_price: Decimal
    mrp: Decimal
    gst_percent: Decimal = ZERO
    expiry: Optional[str] = None
    units_per_pack: int = 1
    min_stock_limit: Optional[int] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    hsn_code: Optional[str] = None
    pack_type: Optional[str] = None
    barcode: Optional[str] = None


@dataclass(frozen=True)
class LedgerEntry:
    """Dated debit/credit record against an account.

    ``balance`` is derived by :func:`pharmacy_ledger.ledger.recalculate` and
    is never treated as authoritative input.
    """

    entry_id: str
    date: str
    entry_type: LedgerEntryType
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal = ZERO


@dataclass(frozen=True)
class Account:
    """Customer or distributor account; its ledger is the balance of record."""

    account_id: str
    kind: AccountKind
    name: str
    phone: Optional[str] = None
    gst_number: Optional[str] = None
    is_active: bool = True
    ledger: Tuple[LedgerEntry, ...] = ()

    @property
    def contact(self) -> Optional[str]:
        """Contact field used for natural-key matching."""
        if self.kind is AccountKind.CUSTOMER:
            return self.phone
        return self.gst_number

    @property
    def current_balance(self) -> Decimal:
        return self.ledger[-1].balance if self.ledger else ZERO


@dataclass(frozen=True)
class SaleLine:
    """Bill line; ``inventory_item_id`` links it to a stocked batch."""

    inventory_item_id: Optional[str]
    name: str
    quantity: int
    unit: StockUnit = StockUnit.LOOSE
    mrp: Decimal = ZERO
    gst_percent: Decimal = ZERO


@dataclass(frozen=True)
class PurchaseLine:
    """Purchase or bulk-intake line matched to inventory by name and batch."""

    name: str
    batch: str
    quantity: int
    purchase_price: Decimal
    mrp: Decimal
    gst_percent: Decimal = ZERO
    expiry: Optional[str] = None
    hsn_code: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    pack_type: Optional[str] = None
    units_per_pack: Optional[int] = None
    loose_quantity: int = 0
    free_quantity: int = 0
    min_stock_limit: Optional[int] = None


@dataclass(frozen=True)
class SalesReturnLine:
    inventory_item_id: Optional[str]
    name: str
    return_quantity: int
    unit: StockUnit = StockUnit.LOOSE
    mrp: Decimal = ZERO
    reason: Optional[str] = None


@dataclass(frozen=True)
class PurchaseReturnLine:
    inventory_item_id: Optional[str]
    name: str
    return_quantity: int
    unit: StockUnit = StockUnit.LOOSE
    purchase_price: Decimal = ZERO
    reason: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrderLine:
    name: str
    quantity: int
    inventory_item_id: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """Sale header (invoice)."""

    transaction_id: str
    date: str
    customer_name: str
    items: Tuple[SaleLine, ...]
    total: Decimal
    amount_received: Decimal = ZERO
    customer_phone: Optional[str] = None
    customer_id: Optional[str] = None
    status: RecordStatus = RecordStatus.COMPLETED


@dataclass(frozen=True)
class Purchase:
    """Purchase header (supplier bill)."""

    purchase_id: str
    serial_id: str
    supplier: str
    invoice_number: str
    date: str
    items: Tuple[PurchaseLine, ...]
    total_amount: Decimal
    purchase_order_id: Optional[str] = None
    status: RecordStatus = RecordStatus.COMPLETED


@dataclass(frozen=True)
class SalesReturn:
    return_id: str
    date: str
    original_invoice_id: str
    customer_name: str
    items: Tuple[SalesReturnLine, ...]
    total_refund: Decimal
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseReturn:
    """Debit note issued to a supplier."""

    return_id: str
    date: str
    supplier: str
    items: Tuple[PurchaseReturnLine, ...]
    total_value: Decimal


@dataclass(frozen=True)
class PurchaseOrder:
    order_id: str
    distributor_name: str
    date: str
    items: Tuple[PurchaseOrderLine, ...]
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    distributor_id: Optional[str] = None


def is_manual_item_id(item_id: Optional[str]) -> bool:
    """Return ``True`` when a line carries no usable inventory link."""
    return not item_id or item_id.startswith(MANUAL_ITEM_PREFIX)


def identity_slug(identity: str) -> str:
    """Turn a login identity into a filesystem-safe namespace."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", identity.strip().lower())
    return slug or "default"


# ---------------------------------------------------------------------------
# Dictionary serialization
# ---------------------------------------------------------------------------


def _money(raw: Any) -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else ZERO


def _money_text(value: Decimal) -> str:
    return str(value)


def _int(raw: Any, default: int = 0) -> int:
    return int(raw) if raw is not None and raw != "" else default


def _opt_int(raw: Any) -> Optional[int]:
    return int(raw) if raw is not None and raw != "" else None


def _opt_str(raw: Any) -> Optional[str]:
    return str(raw) if raw is not None and raw != "" else None


def _text(raw: Any) -> str:
    return str(raw) if raw is not None else ""


def serialize_inventory_item(record: InventoryItem) -> Dict[str, Any]:
    """Convert an inventory item into its persisted dictionary shape."""

    return {
        "id": record.item_id,
        "name": record.name,
        "batch": record.batch,
        "stock": record.stock,
        "purchasePrice": _money_text(record.purchase_price),
        "mrp": _money_text(record.mrp),
        "gstPercent": _money_text(record.gst_percent),
        "expiry": record.expiry,
        "unitsPerPack": record.units_per_pack,
        "minStockLimit": record.min_stock_limit,
        "brand": record.brand,
        "category": record.category,
        "hsnCode": record.hsn_code,
        "packType": record.pack_type,
        "barcode": record.barcode,
    }


def deserialize_inventory_item(raw: Mapping[str, Any]) -> InventoryItem:
    """Build an :class:`InventoryItem` from a persisted dictionary.

    Missing numeric fields fall back to zero, ``unitsPerPack`` falls back to
    one, and blank optional text fields become ``None``.
    """

    return InventoryItem(
        item_id=_text(raw.get("id")),
        name=_text(raw.get("name")),
        batch=_text(raw.get("batch")),
        stock=_int(raw.get("stock")),
        purchase_price=_money(raw.get("purchasePrice")),
        mrp=_money(raw.get("mrp")),
        gst_percent=_money(raw.get("gstPercent")),
        expiry=_opt_str(raw.get("expiry")),
        units_per_pack=_int(raw.get("unitsPerPack"), 1) or 1,
        min_stock_limit=_opt_int(raw.get("minStockLimit")),
        brand=_opt_str(raw.get("brand")),
        category=_opt_str(raw.get("category")),
        hsn_code=_opt_str(raw.get("hsnCode")),
        pack_type=_opt_str(raw.get("packType")),
        barcode=_opt_str(raw.get("barcode")),
    )


def serialize_ledger_entry(record: LedgerEntry) -> Dict[str, Any]:
    return {
        "id": record.entry_id,
        "date": record.date,
        "type": record.entry_type.value,
        "description": record.description,
        "debit": _money_text(record.debit),
        "credit": _money_text(record.credit),
        "balance": _money_text(record.balance),
    }


def deserialize_ledger_entry(raw: Mapping[str, Any]) -> LedgerEntry:
    return LedgerEntry(
        entry_id=_text(raw.get("id")),
        date=_text(raw.get("date")),
        entry_type=LedgerEntryType(raw.get("type")),
        description=_text(raw.get("description")),
        debit=_money(raw.get("debit")),
        credit=_money(raw.get("credit")),
        balance=_money(raw.get("balance")),
    )


def serialize_account(record: Account) -> Dict[str, Any]:
    return {
        "id": record.account_id,
        "kind": record.kind.value,
        "name": record.name,
        "phone": record.phone,
        "gstNumber": record.gst_number,
        "isActive": record.is_active,
        "ledger": [serialize_ledger_entry(entry) for entry in record.ledger],
    }


def deserialize_account(raw: Mapping[str, Any], *, kind: Optional[AccountKind] = None) -> Account:
    """Build an :class:`Account`; ``kind`` wins over the stored value when given."""

    resolved_kind = kind if kind is not None else AccountKind(raw.get("kind"))
    is_active = raw.get("isActive")
    return Account(
        account_id=_text(raw.get("id")),
        kind=resolved_kind,
        name=_text(raw.get("name")),
        phone=_opt_str(raw.get("phone")),
        gst_number=_opt_str(raw.get("gstNumber")),
        is_active=True if is_active is None else bool(is_active),
        ledger=tuple(deserialize_ledger_entry(entry) for entry in raw.get("ledger") or ()),
    )


def serialize_sale_line(record: SaleLine) -> Dict[str, Any]:
    return {
        "inventoryItemId": record.inventory_item_id,
        "name": record.name,
        "quantity": record.quantity,
        "unit": record.unit.value,
        "mrp": _money_text(record.mrp),
        "gstPercent": _money_text(record.gst_percent),
    }


def deserialize_sale_line(raw: Mapping[str, Any]) -> SaleLine:
    return SaleLine(
        inventory_item_id=_opt_str(raw.get("inventoryItemId")),
        name=_text(raw.get("name")),
        quantity=_int(raw.get("quantity")),
        unit=StockUnit(raw.get("unit") or StockUnit.LOOSE.value),
        mrp=_money(raw.get("mrp")),
        gst_percent=_money(raw.get("gstPercent")),
    )


def serialize_purchase_line(record: PurchaseLine) -> Dict[str, Any]:
    return {
        "name": record.name,
        "batch": record.batch,
        "quantity": record.quantity,
        "purchasePrice": _money_text(record.purchase_price),
        "mrp": _money_text(record.mrp),
        "gstPercent": _money_text(record.gst_percent),
        "expiry": record.expiry,
        "hsnCode": record.hsn_code,
        "brand": record.brand,
        "category": record.category,
        "packType": record.pack_type,
        "unitsPerPack": record.units_per_pack,
        "looseQuantity": record.loose_quantity,
        "freeQuantity": record.free_quantity,
        "minStockLimit": record.min_stock_limit,
    }


def deserialize_purchase_line(raw: Mapping[str, Any]) -> PurchaseLine:
    return PurchaseLine(
        name=_text(raw.get("name")),
        batch=_text(raw.get("batch")),
        quantity=_int(raw.get("quantity")),
        purchase_price=_money(raw.get("purchasePrice")),
        mrp=_money(raw.get("mrp")),
        gst_percent=_money(raw.get("gstPercent")),
        expiry=_opt_str(raw.get("expiry")),
        hsn_code=_opt_str(raw.get("hsnCode")),
        brand=_opt_str(raw.get("brand")),
        category=_opt_str(raw.get("category")),
        pack_type=_opt_str(raw.get("packType")),
        units_per_pack=_opt_int(raw.get("unitsPerPack")),
        loose_quantity=_int(raw.get("looseQuantity")),
        free_quantity=_int(raw.get("freeQuantity")),
        min_stock_limit=_opt_int(raw.get("minStockLimit")),
    )


def serialize_sales_return_line(record: SalesReturnLine) -> Dict[str, Any]:
    return {
        "inventoryItemId": record.inventory_item_id,
        "name": record.name,
        "returnQuantity": record.return_quantity,
        "unit": record.unit.value,
        "mrp": _money_text(record.mrp),
        "reason": record.reason,
    }


def deserialize_sales_return_line(raw: Mapping[str, Any]) -> SalesReturnLine:
    return SalesReturnLine(
        inventory_item_id=_opt_str(raw.get("inventoryItemId")),
        name=_text(raw.get("name")),
        return_quantity=_int(raw.get("returnQuantity")),
        unit=StockUnit(raw.get("unit") or StockUnit.LOOSE.value),
        mrp=_money(raw.get("mrp")),
        reason=_opt_str(raw.get("reason")),
    )


def serialize_purchase_return_line(record: PurchaseReturnLine) -> Dict[str, Any]:
    return {
        "inventoryItemId": record.inventory_item_id,
        "name": record.name,
        "returnQuantity": record.return_quantity,
        "unit": record.unit.value,
        "purchasePrice": _money_text(record.purchase_price),
        "reason": record.reason,
    }


def deserialize_purchase_return_line(raw: Mapping[str, Any]) -> PurchaseReturnLine:
    return PurchaseReturnLine(
        inventory_item_id=_opt_str(raw.get("inventoryItemId")),
        name=_text(raw.get("name")),
        return_quantity=_int(raw.get("returnQuantity")),
        unit=StockUnit(raw.get("unit") or StockUnit.LOOSE.value),
        purchase_price=_money(raw.get("purchasePrice")),
        reason=_opt_str(raw.get("reason")),
    )


def serialize_purchase_order_line(record: PurchaseOrderLine) -> Dict[str, Any]:
    return {
        "name": record.name,
        "quantity": record.quantity,
        "inventoryItemId": record.inventory_item_id,
    }


def deserialize_purchase_order_line(raw: Mapping[str, Any]) -> PurchaseOrderLine:
    return PurchaseOrderLine(
        name=_text(raw.get("name")),
        quantity=_int(raw.get("quantity")),
        inventory_item_id=_opt_str(raw.get("inventoryItemId")),
    )


def serialize_transaction(record: Transaction) -> Dict[str, Any]:
    return {
        "id": record.transaction_id,
        "date": record.date,
        "customerName": record.customer_name,
        "customerPhone": record.customer_phone,
        "customerId": record.customer_id,
        "items": [serialize_sale_line(item) for item in record.items],
        "total": _money_text(record.total),
        "amountReceived": _money_text(record.amount_received),
        "status": record.status.value,
    }


def deserialize_transaction(raw: Mapping[str, Any]) -> Transaction:
    return Transaction(
        transaction_id=_text(raw.get("id")),
        date=_text(raw.get("date")),
        customer_name=_text(raw.get("customerName")),
        items=tuple(deserialize_sale_line(item) for item in raw.get("items") or ()),
        total=_money(raw.get("total")),
        amount_received=_money(raw.get("amountReceived")),
        customer_phone=_opt_str(raw.get("customerPhone")),
        customer_id=_opt_str(raw.get("customerId")),
        status=RecordStatus(raw.get("status") or RecordStatus.COMPLETED.value),
    )


def serialize_purchase(record: Purchase) -> Dict[str, Any]:
    return {
        "id": record.purchase_id,
        "purchaseSerialId": record.serial_id,
        "supplier": record.supplier,
        "invoiceNumber": record.invoice_number,
        "date": record.date,
        "items": [serialize_purchase_line(item) for item in record.items],
        "totalAmount": _money_text(record.total_amount),
        "purchaseOrderId": record.purchase_order_id,
        "status": record.status.value,
    }


def deserialize_purchase(raw: Mapping[str, Any]) -> Purchase:
    return Purchase(
        purchase_id=_text(raw.get("id")),
        serial_id=_text(raw.get("purchaseSerialId")),
        supplier=_text(raw.get("supplier")),
        invoice_number=_text(raw.get("invoiceNumber")),
        date=_text(raw.get("date")),
        items=tuple(deserialize_purchase_line(item) for item in raw.get("items") or ()),
        total_amount=_money(raw.get("totalAmount")),
        purchase_order_id=_opt_str(raw.get("purchaseOrderId")),
        status=RecordStatus(raw.get("status") or RecordStatus.COMPLETED.value),
    )


def serialize_sales_return(record: SalesReturn) -> Dict[str, Any]:
    return {
        "id": record.return_id,
        "date": record.date,
        "originalInvoiceId": record.original_invoice_id,
        "customerName": record.customer_name,
        "customerId": record.customer_id,
        "items": [serialize_sales_return_line(item) for item in record.items],
        "totalRefund": _money_text(record.total_refund),
    }


def deserialize_sales_return(raw: Mapping[str, Any]) -> SalesReturn:
    return SalesReturn(
        return_id=_text(raw.get("id")),
        date=_text(raw.get("date")),
        original_invoice_id=_text(raw.get("originalInvoiceId")),
        customer_name=_text(raw.get("customerName")),
        items=tuple(deserialize_sales_return_line(item) for item in raw.get("items") or ()),
        total_refund=_money(raw.get("totalRefund")),
        customer_id=_opt_str(raw.get("customerId")),
    )


def serialize_purchase_return(record: PurchaseReturn) -> Dict[str, Any]:
    return {
        "id": record.return_id,
        "date": record.date,
        "supplier": record.supplier,
        "items": [serialize_purchase_return_line(item) for item in record.items],
        "totalValue": _money_text(record.total_value),
    }


def deserialize_purchase_return(raw: Mapping[str, Any]) -> PurchaseReturn:
    return PurchaseReturn(
        return_id=_text(raw.get("id")),
        date=_text(raw.get("date")),
        supplier=_text(raw.get("supplier")),
        items=tuple(deserialize_purchase_return_line(item) for item in raw.get("items") or ()),
        total_value=_money(raw.get("totalValue")),
    )


def serialize_purchase_order(record: PurchaseOrder) -> Dict[str, Any]:
    return {
        "id": record.order_id,
        "distributorName": record.distributor_name,
        "distributorId": record.distributor_id,
        "date": record.date,
        "items": [serialize_purchase_order_line(item) for item in record.items],
        "status": record.status.value,
    }


def deserialize_purchase_order(raw: Mapping[str, Any]) -> PurchaseOrder:
    return PurchaseOrder(
        order_id=_text(raw.get("id")),
        distributor_name=_text(raw.get("distributorName")),
        date=_text(raw.get("date")),
        items=tuple(deserialize_purchase_order_line(item) for item in raw.get("items") or ()),
        status=PurchaseOrderStatus(raw.get("status") or PurchaseOrderStatus.DRAFT.value),
        distributor_id=_opt_str(raw.get("distributorId")),
    )


_SERIALIZERS: Dict[Collection, Tuple[Callable[[Any], Dict[str, Any]], Callable[[Mapping[str, Any]], Any]]] = {
    Collection.TRANSACTIONS: (serialize_transaction, deserialize_transaction),
    Collection.INVENTORY: (serialize_inventory_item, deserialize_inventory_item),
    Collection.SALES_RETURNS: (serialize_sales_return, deserialize_sales_return),
    Collection.PURCHASE_RETURNS: (serialize_purchase_return, deserialize_purchase_return),
    Collection.PURCHASES: (serialize_purchase, deserialize_purchase),
    Collection.PURCHASE_ORDERS: (serialize_purchase_order, deserialize_purchase_order),
    Collection.DISTRIBUTORS: (
        serialize_account,
        lambda raw: deserialize_account(raw, kind=AccountKind.DISTRIBUTOR),
    ),
    Collection.CUSTOMERS: (
        serialize_account,
        lambda raw: deserialize_account(raw, kind=AccountKind.CUSTOMER),
    ),
}


def serialize_collection(collection: str, records: Iterable[Any]) -> List[Dict[str, Any]]:
    """Convert typed records of ``collection`` into persisted dictionaries."""

    serializer, _ = _SERIALIZERS[Collection(collection)]
    return [serializer(record) for record in records]


def deserialize_collection(collection: str, rows: Iterable[Mapping[str, Any]]) -> List[Any]:
    """Convert persisted dictionaries of ``collection`` into typed records."""

    _, deserializer = _SERIALIZERS[Collection(collection)]
    return [deserializer(row) for row in rows]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME`` and returns the first match.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Session]`` entries are required; ``[Defaults]``
    entries are optional. A relative ``DataDir`` is anchored at
    ``base_path`` (the config file's directory for normal callers) or the
    current working directory.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``MinStockLimit`` is not an integer.
    """

    try:
        data_dir_raw = parser.get("System", "DataDir")
        pharmacy_name = parser.get("System", "PharmacyName")
        schema_version = parser.get("System", "SchemaVersion")
        identity = parser.get("Session", "Identity")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    walk_in = parser.get("Defaults", "WalkInCustomer", fallback=WALK_IN_CUSTOMER)
    min_stock_limit = parser.getint("Defaults", "MinStockLimit", fallback=DEFAULT_MIN_STOCK_LIMIT)

    data_dir = Path(data_dir_raw)
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = (base_path / data_dir).resolve()

    return ConfigSettings(
        data_dir=data_dir,
        pharmacy_name=pharmacy_name,
        schema_version=schema_version,
        identity=identity,
        walk_in_customer=walk_in,
        min_stock_limit=min_stock_limit,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------

# Header rows of every managed sheet. Headers double as dictionary keys.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.TRANSACTIONS.value: [
        "id", "date", "customerName", "customerPhone", "customerId",
        "items", "total", "amountReceived", "status",
    ],
    SheetName.INVENTORY.value: [
        "id", "name", "batch", "stock", "purchasePrice", "mrp", "gstPercent",
        "expiry", "unitsPerPack", "minStockLimit", "brand", "category",
        "hsnCode", "packType", "barcode",
    ],
    SheetName.SALES_RETURNS.value: [
        "id", "date", "originalInvoiceId", "customerName", "customerId",
        "items", "totalRefund",
    ],
    SheetName.PURCHASE_RETURNS.value: ["id", "date", "supplier", "items", "totalValue"],
    SheetName.PURCHASES.value: [
        "id", "purchaseSerialId", "supplier", "invoiceNumber", "date",
        "items", "totalAmount", "purchaseOrderId", "status",
    ],
    SheetName.PURCHASE_ORDERS.value: [
        "id", "distributorName", "distributorId", "date", "items", "status",
    ],
    SheetName.DISTRIBUTORS.value: ["id", "kind", "name", "phone", "gstNumber", "isActive"],
    SheetName.CUSTOMERS.value: ["id", "kind", "name", "phone", "gstNumber", "isActive"],
    SheetName.LEDGER_ENTRIES.value: [
        "accountKind", "accountId", "id", "date", "type", "description", "debit", "credit", "balance",
    ],
    SheetName.META.value: ["key", "value"],
}

# Columns holding nested line items, stored as JSON text.
JSON_COLUMNS = frozenset({"items"})


def open_workbook(data_file: Path) -> Workbook:
    """Open a per-identity workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def _ensure_sheet(workbook: Workbook, sheet_name: str) -> Worksheet:
    if sheet_name in workbook.sheetnames:
        return workbook[sheet_name]
    sheet = workbook.create_sheet(title=sheet_name)
    sheet.append(list(SHEET_COLUMNS[sheet_name]))
    return sheet


def _read_sheet_rows(sheet: Worksheet) -> List[Dict[str, Any]]:
    """Return data rows keyed by the header row, skipping empty rows."""

    header = [cell.value for cell in sheet[1]]
    rows: List[Dict[str, Any]] = []
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        row: Dict[str, Any] = {}
        for column, value in zip(header, raw):
            if column is None:
                continue
            if column in JSON_COLUMNS:
                value = json.loads(value) if value else []
            row[column] = value
        rows.append(row)
    return rows


def _write_sheet_rows(sheet: Worksheet, rows: Iterable[Mapping[str, Any]]) -> None:
    """Replace every data row of ``sheet`` with ``rows``."""

    columns = list(SHEET_COLUMNS[sheet.title])
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    # Workbooks created by older releases may lack newer columns.
    for index, column in enumerate(columns, start=1):
        if sheet.cell(row=1, column=index).value != column:
            sheet.cell(row=1, column=index, value=column)
    for row in rows:
        values = []
        for column in columns:
            value = row.get(column)
            if column in JSON_COLUMNS:
                value = json.dumps(value or [], sort_keys=True)
            values.append(value)
        sheet.append(values)


# ---------------------------------------------------------------------------
# Persistence gateways
# ---------------------------------------------------------------------------


class PersistenceGateway(Protocol):
    """Durable storage keyed by logical collection name."""

    def get(self, collection: str, default: T) -> T: ...

    def save(self, collection: str, value: Any) -> None: ...

    def export_snapshot(self) -> Dict[str, Any]: ...

    def import_snapshot(self, document: Mapping[str, Any]) -> None: ...


def build_snapshot_document(collections: Mapping[str, Any]) -> Dict[str, Any]:
    """Wrap per-collection values in a versioned snapshot document."""

    return {
        "schemaVersion": EXPECTED_SCHEMA_VERSION,
        "collections": {
            collection.value: collections.get(collection.value, [])
            for collection in Collection
        },
    }


def dump_snapshot(document: Mapping[str, Any]) -> str:
    """Serialize a snapshot document into stable JSON text."""
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False)


def load_snapshot(text: str) -> Dict[str, Any]:
    """Parse snapshot JSON text and validate its envelope.

    Raises:
        ValueError: If the text is not a snapshot document or its schema
            version differs from ``EXPECTED_SCHEMA_VERSION``.
    """

    document = json.loads(text)
    validate_snapshot(document)
    return document


def validate_snapshot(document: Any) -> None:
    if not isinstance(document, Mapping) or not isinstance(document.get("collections"), Mapping):
        raise ValueError("Invalid snapshot document: missing 'collections' mapping")
    version = document.get("schemaVersion")
    if version != EXPECTED_SCHEMA_VERSION:
        raise ValueError(
            f"Snapshot schema mismatch: expected {EXPECTED_SCHEMA_VERSION}, found {version}"
        )


def validate_snapshot_records(document: Mapping[str, Any]) -> None:
    """Deserialize every record of ``document`` without storing anything.

    Raises:
        ValueError: Naming the first collection holding an unreadable record.
    """

    for name, rows in document["collections"].items():
        try:
            deserialize_collection(name, rows or [])
        except (ValueError, TypeError, KeyError, AttributeError, ArithmeticError) as exc:
            raise ValueError(f"Invalid record in snapshot collection '{name}': {exc}") from exc


class _SnapshotGateway:
    """Snapshot export/import built on ``get``/``save``."""

    def get(self, collection: str, default: T) -> T:  # pragma: no cover - abstract
        raise NotImplementedError

    def save(self, collection: str, value: Any) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def export_snapshot(self) -> Dict[str, Any]:
        """Serialize every collection into one document."""
        collections = {collection.value: self.get(collection.value, []) for collection in Collection}
        return build_snapshot_document(collections)

    def import_snapshot(self, document: Mapping[str, Any]) -> None:
        """Replace every collection from ``document``; absent ones become empty.

        The whole document is checked before the first collection is written.
        """

        validate_snapshot(document)
        validate_snapshot_records(document)
        stored = document["collections"]
        for collection in Collection:
            self.save(collection.value, stored.get(collection.value, []))
        log.info("Imported snapshot with %d collections", len(Collection))


class MemoryGateway(_SnapshotGateway):
    """Gateway keeping deep copies of collection values in a dictionary."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._store: Dict[str, Any] = {}
        for name, value in (initial or {}).items():
            self.save(name, value)

    def get(self, collection: str, default: T) -> T:
        key = Collection(collection).value
        if key not in self._store:
            return default
        return copy.deepcopy(self._store[key])

    def save(self, collection: str, value: Any) -> None:
        key = Collection(collection).value
        self._store[key] = copy.deepcopy(value)


class WorkbookGateway(_SnapshotGateway):
    """Gateway backed by one openpyxl workbook per logged-in identity.

    Each collection owns a sheet whose header row names the dictionary keys.
    Line items are stored as JSON text. Account ledgers live on the shared
    ``LedgerEntries`` sheet, one row per entry. The stored balance is
    returned as saved; callers recompute it on load. Every :meth:`save`
    writes the workbook to disk.
    """

    def __init__(self, data_file: Path, workbook: Optional[Workbook] = None) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.workbook = workbook if workbook is not None else open_workbook(self.data_file)

    @classmethod
    def for_settings(cls, settings: ConfigSettings) -> "WorkbookGateway":
        return cls(settings.data_file)

    def get(self, collection: str, default: T) -> T:
        key = Collection(collection)
        sheet_name = COLLECTION_SHEETS[key].value
        if sheet_name not in self.workbook.sheetnames:
            return default

        rows = _read_sheet_rows(self.workbook[sheet_name])
        kind = _account_kind_for(key)
        if kind is not None:
            ledgers = self._read_ledgers(kind)
            for row in rows:
                row["ledger"] = ledgers.get(str(row.get("id")), [])
        return rows  # type: ignore[return-value]

    def save(self, collection: str, value: Any) -> None:
        key = Collection(collection)
        rows = list(value or [])
        sheet = _ensure_sheet(self.workbook, COLLECTION_SHEETS[key].value)
        _write_sheet_rows(sheet, rows)

        kind = _account_kind_for(key)
        if kind is not None:
            self._write_ledgers(kind, rows)

        save_workbook(self.workbook, self.data_file)
        log.debug("Saved %d rows to collection '%s'", len(rows), key.value)

    def _read_ledgers(self, kind: AccountKind) -> Dict[str, List[Dict[str, Any]]]:
        ledgers: Dict[str, List[Dict[str, Any]]] = {}
        if SheetName.LEDGER_ENTRIES.value not in self.workbook.sheetnames:
            return ledgers
        for row in _read_sheet_rows(self.workbook[SheetName.LEDGER_ENTRIES.value]):
            if row.get("accountKind") != kind.value:
                continue
            account_id = str(row.pop("accountId"))
            row.pop("accountKind")
            ledgers.setdefault(account_id, []).append(row)
        return ledgers

    def _write_ledgers(self, kind: AccountKind, accounts: Sequence[Mapping[str, Any]]) -> None:
        sheet = _ensure_sheet(self.workbook, SheetName.LEDGER_ENTRIES.value)
        kept = [row for row in _read_sheet_rows(sheet) if row.get("accountKind") != kind.value]
        for account in accounts:
            for entry in account.get("ledger") or ():
                row = dict(entry)
                row["accountKind"] = kind.value
                row["accountId"] = account.get("id")
                kept.append(row)
        _write_sheet_rows(sheet, kept)


def _account_kind_for(collection: Collection) -> Optional[AccountKind]:
    for kind, account_collection in ACCOUNT_COLLECTIONS.items():
        if account_collection is collection:
            return kind
    return None
