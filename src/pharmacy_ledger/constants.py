"""Enumerations and defaults shared across the reconciliation core.

Centralises domain identifiers so that the persistence layer, the event
processor, and the CLI agree on collection names, ledger entry types, and
record states.
"""

from __future__ import annotations

from enum import Enum


# Schema version written into every workbook and snapshot document.
EXPECTED_SCHEMA_VERSION = "1.0.0"

WALK_IN_CUSTOMER = "Walk-in Customer"
DEFAULT_MIN_STOCK_LIMIT = 10
# Units assumed for a pack type string that carries no digits.
DEFAULT_PACK_UNITS = 10
MANUAL_ITEM_PREFIX = "MANUAL"


class LedgerEntryType(str, Enum):
    """Enumerate the kinds of entries an account ledger may hold."""

    OPENING_BALANCE = "openingBalance"
    SALE = "sale"
    PURCHASE = "purchase"
    PAYMENT = "payment"
    RETURN = "return"


class AccountKind(str, Enum):
    """Enumerate counterparty account kinds."""

    CUSTOMER = "customer"
    DISTRIBUTOR = "distributor"


class StockUnit(str, Enum):
    """Unit a line-item quantity is expressed in."""

    PACK = "pack"
    LOOSE = "loose"


class PurchaseOrderStatus(str, Enum):
    """Lifecycle states of a purchase order.

    ``PARTIALLY_RECEIVED`` is declared for compatibility with stored data;
    no transition in this package produces it.
    """

    DRAFT = "draft"
    ORDERED = "ordered"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"


class RecordStatus(str, Enum):
    """Status carried by sale and purchase headers."""

    COMPLETED = "completed"


class Collection(str, Enum):
    """Logical collection names understood by persistence gateways."""

    TRANSACTIONS = "transactions"
    INVENTORY = "inventory"
    SALES_RETURNS = "salesReturns"
    PURCHASE_RETURNS = "purchaseReturns"
    PURCHASES = "purchases"
    PURCHASE_ORDERS = "purchaseOrders"
    DISTRIBUTORS = "distributors"
    CUSTOMERS = "customers"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the workbook gateway."""

    TRANSACTIONS = "Transactions"
    INVENTORY = "Inventory"
    SALES_RETURNS = "SalesReturns"
    PURCHASE_RETURNS = "PurchaseReturns"
    PURCHASES = "Purchases"
    PURCHASE_ORDERS = "PurchaseOrders"
    DISTRIBUTORS = "Distributors"
    CUSTOMERS = "Customers"
    LEDGER_ENTRIES = "LedgerEntries"
    META = "Meta"


COLLECTION_SHEETS = {
    Collection.TRANSACTIONS: SheetName.TRANSACTIONS,
    Collection.INVENTORY: SheetName.INVENTORY,
    Collection.SALES_RETURNS: SheetName.SALES_RETURNS,
    Collection.PURCHASE_RETURNS: SheetName.PURCHASE_RETURNS,
    Collection.PURCHASES: SheetName.PURCHASES,
    Collection.PURCHASE_ORDERS: SheetName.PURCHASE_ORDERS,
    Collection.DISTRIBUTORS: SheetName.DISTRIBUTORS,
    Collection.CUSTOMERS: SheetName.CUSTOMERS,
}

ACCOUNT_COLLECTIONS = {
    AccountKind.CUSTOMER: Collection.CUSTOMERS,
    AccountKind.DISTRIBUTOR: Collection.DISTRIBUTORS,
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "WALK_IN_CUSTOMER",
    "DEFAULT_MIN_STOCK_LIMIT",
    "DEFAULT_PACK_UNITS",
    "MANUAL_ITEM_PREFIX",
    "LedgerEntryType",
    "AccountKind",
    "StockUnit",
    "PurchaseOrderStatus",
    "RecordStatus",
    "Collection",
    "SheetName",
    "COLLECTION_SHEETS",
    "ACCOUNT_COLLECTIONS",
]
