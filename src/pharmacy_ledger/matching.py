"""Natural-key normalization shared by account and inventory matching."""

from __future__ import annotations

from typing import Optional


def normalize(text: Optional[str]) -> str:
    """Return the comparison key for a human-entered name or batch."""
    return (text or "").strip().lower()


def inventory_key(name: Optional[str], batch: Optional[str]) -> str:
    """Natural key of an inventory batch: ``normalize(name)-normalize(batch)``."""
    return f"{normalize(name)}-{normalize(batch)}"


def same_contact(left: Optional[str], right: Optional[str]) -> bool:
    """Exact contact comparison; blank contacts never match."""
    if not left or not right:
        return False
    return left.strip() == right.strip()
