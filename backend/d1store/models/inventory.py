from __future__ import annotations

from ..extensions import db
from d1store.time_utils import to_utc_z, utcnow


# Stock identity. Earlier generations keyed on EAN alone.
STOCK_IDENTITY_KEY = ("ean", "name")


class StockItem(db.Model):
    """
    Uniform stock line.

    IDENTITY: (ean, name) is the uniqueness key. The import pipeline renumbers
    colliding EANs, so in practice an EAN maps to one name.

    QUANTITY: qty is a mutable on-hand count. It is only changed by
    - import (create)
    - request creation (conditional decrement)
    - request cancellation (increment restore)
    The check constraint keeps it non-negative even if a caller bypasses the
    conditional update.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.UniqueConstraint(*STOCK_IDENTITY_KEY, name="uq_stock_items_ean_name"),
        db.CheckConstraint("qty >= 0", name="ck_stock_items_qty_non_negative"),
        db.Index("ix_stock_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ean = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<StockItem id={self.id} ean={self.ean!r} name={self.name!r} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ean": self.ean,
            "name": self.name,
            "qty": self.qty,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
