# Overview: Service-layer operations for stock items; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockItem, UniformRequest
from ..validation import ConflictError, require_text


class StockItemNotFoundError(ValueError):
    """Raised when a stock item lookup by (ean, name) finds nothing."""


class StockItemInUseError(ConflictError):
    """Raised when deleting a stock item that requests still reference."""


def list_stock_items() -> list[StockItem]:
    return db.session.query(StockItem).order_by(StockItem.name.asc(), StockItem.ean.asc()).all()


def find_stock_item(ean: str, name: str) -> StockItem | None:
    return db.session.query(StockItem).filter_by(ean=ean, name=name).first()


def low_stock_items(threshold: int) -> list[StockItem]:
    return (
        db.session.query(StockItem)
        .filter(StockItem.qty <= threshold)
        .order_by(StockItem.qty.asc(), StockItem.name.asc())
        .all()
    )


def delete_stock_item(ean: str, name: str) -> None:
    """
    Remove a stock item.

    Raises:
        ValidationError: ean or name missing
        StockItemNotFoundError: no item with that (ean, name)
        StockItemInUseError: uniform requests reference the item
    """
    ean = require_text(ean, "ean")
    name = require_text(name, "name")
    item = find_stock_item(ean, name)
    if item is None:
        raise StockItemNotFoundError("Stock item not found")

    referenced = db.session.query(UniformRequest.id).filter_by(stock_item_id=item.id).first()
    if referenced:
        raise StockItemInUseError("Cannot remove: item is referenced by existing requests")

    db.session.delete(item)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise StockItemInUseError("Cannot remove: item is referenced by existing requests") from exc
