"""Stock mutation for inventory collections.

Two matching modes exist. Sales and returns carry the exact inventory
identity of each line and are applied with :func:`apply_identity_deltas`.
Purchases and bulk intake identify a batch by its natural key
(``name`` + ``batch``) and are applied with :func:`apply_intake_lines`,
which creates inventory records for batches not seen before.

Both functions return the full updated collection rather than a patch.
Stock is always counted in loose units; no mutator prevents negative stock.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import log
from .constants import DEFAULT_MIN_STOCK_LIMIT, DEFAULT_PACK_UNITS, StockUnit
from .data_manager import InventoryItem, PurchaseLine, is_manual_item_id
from .matching import inventory_key, normalize


@dataclass(frozen=True)
class StockDelta:
    """Signed stock change for one inventory identity."""

    inventory_item_id: Optional[str]
    quantity: int
    unit: StockUnit = StockUnit.LOOSE


def parse_units_from_pack_type(pack_type: Optional[str]) -> int:
    """Read the loose units in a pack from strings like ``"10's strip"`` or ``"1*15"``.

    The largest integer in the string wins. Strings without a positive
    integer fall back to ``DEFAULT_PACK_UNITS``.
    """

    if not pack_type:
        return DEFAULT_PACK_UNITS
    numbers = [int(match) for match in re.findall(r"\d+", pack_type)]
    largest = max(numbers, default=0)
    return largest if largest > 0 else DEFAULT_PACK_UNITS


def units_for_line(line: PurchaseLine) -> int:
    """Loose units represented by one purchased pack of ``line``."""

    if line.units_per_pack:
        return line.units_per_pack
    if line.pack_type:
        return parse_units_from_pack_type(line.pack_type)
    return 1


def loose_quantity(line: PurchaseLine) -> int:
    """Total loose units a purchase line brings in, free goods included."""
    return line.quantity * units_for_line(line) + line.loose_quantity + line.free_quantity


def to_loose_units(quantity: int, unit: StockUnit, item: InventoryItem) -> int:
    if unit is StockUnit.PACK:
        return quantity * (item.units_per_pack or 1)
    return quantity


def apply_identity_deltas(inventory: Sequence[InventoryItem], deltas: Iterable[StockDelta]) -> List[InventoryItem]:
    """Apply signed deltas to the items whose ``item_id`` they reference.

    Deltas for manual lines or unknown identities are dropped without error.

    Args:
        inventory (Sequence[InventoryItem]): Current inventory collection.
        deltas (Iterable[StockDelta]): Signed changes; the quantity sign
            decides the direction and ``unit`` the scale.

    Returns:
        list[InventoryItem]: Updated collection in its original order.
    """

    updated = list(inventory)
    positions = {item.item_id: index for index, item in enumerate(updated)}
    for delta in deltas:
        if is_manual_item_id(delta.inventory_item_id):
            log.debug("Skipping stock delta for unlinked line (%s)", delta.inventory_item_id)
            continue
        index = positions.get(delta.inventory_item_id)  # type: ignore[arg-type]
        if index is None:
            log.debug("No inventory item '%s'; stock delta dropped", delta.inventory_item_id)
            continue
        item = updated[index]
        change = to_loose_units(delta.quantity, delta.unit, item)
        updated[index] = replace(item, stock=item.stock + change)
        log.debug("Stock of '%s' changed by %d to %d", item.item_id, change, item.stock + change)
    return updated


def apply_intake_lines(
    inventory: Sequence[InventoryItem],
    lines: Iterable[PurchaseLine],
    *,
    default_min_stock: int = DEFAULT_MIN_STOCK_LIMIT,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> List[InventoryItem]:
    """Merge purchased or imported lines into inventory by natural key.

    A matching batch gains the line's loose quantity and takes the line's
    ``purchase_price``, ``mrp`` and ``expiry`` (latest purchase wins). Lines
    naming an unknown batch create a new item with a fresh identity and
    ``min_stock_limit`` of the line or ``default_min_stock``. Several lines
    for the same batch accumulate. Lines with a blank name or batch are
    ignored.
    """

    updated = list(inventory)
    positions: Dict[str, int] = {}
    for index, item in enumerate(updated):
        positions.setdefault(inventory_key(item.name, item.batch), index)

    for line in lines:
        if not normalize(line.name) or not normalize(line.batch):
            log.debug("Skipping intake line without name or batch: %r", line.name)
            continue

        key = inventory_key(line.name, line.batch)
        quantity = loose_quantity(line)
        index = positions.get(key)
        if index is not None:
            existing = updated[index]
            updated[index] = replace(
                existing,
                stock=existing.stock + quantity,
                purchase_price=line.purchase_price,
                mrp=line.mrp,
                expiry=line.expiry,
                units_per_pack=line.units_per_pack or (
                    parse_units_from_pack_type(line.pack_type) if line.pack_type else existing.units_per_pack
                ),
                pack_type=line.pack_type or existing.pack_type,
            )
            log.debug("Restocked '%s' by %d", existing.item_id, quantity)
            continue

        item_id = id_factory()
        updated.append(
            InventoryItem(
                item_id=item_id,
                name=line.name.strip(),
                batch=line.batch.strip(),
                stock=quantity,
                purchase_price=line.purchase_price,
                mrp=line.mrp,
                gst_percent=line.gst_percent,
                expiry=line.expiry,
                units_per_pack=units_for_line(line),
                min_stock_limit=line.min_stock_limit if line.min_stock_limit is not None else default_min_stock,
                brand=line.brand,
                category=line.category,
                hsn_code=line.hsn_code,
                pack_type=line.pack_type,
                barcode=item_id,
            )
        )
        positions[key] = len(updated) - 1
        log.debug("Created inventory item '%s' for '%s'", item_id, key)

    return updated


def list_low_stock(inventory: Iterable[InventoryItem]) -> List[InventoryItem]:
    """Items still in stock but at or below their minimum stock limit."""

    return [
        item
        for item in inventory
        if item.min_stock_limit is not None and 0 < item.stock <= item.min_stock_limit
    ]
