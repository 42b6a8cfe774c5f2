from __future__ import annotations

from ..extensions import db
from d1store.time_utils import to_utc_z, utcnow


TRACKING_ID_CONSTRAINT = "uq_uniform_requests_tracking_id"


class UniformRequest(db.Model):
    """
    A staff member's request for a quantity of one stock item.

    IMMUTABLE AFTER CREATION: staff_id, stock_item_id, quantity, tracking_id,
    created_at. created_at drives the cooldown window.

    MUTABLE: status (only through request_status_service), notes.

    ean / item_name are snapshots of the stock item at request time so the
    request stays readable if the item is later renamed.
    """
    __tablename__ = "uniform_requests"
    __table_args__ = (
        db.UniqueConstraint("tracking_id", name=TRACKING_ID_CONSTRAINT),
        db.CheckConstraint("quantity > 0", name="ck_uniform_requests_quantity_positive"),
        db.Index("ix_uniform_requests_staff_created", "staff_id", "created_at"),
        db.Index("ix_uniform_requests_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    stock_item_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    ean = db.Column(db.String(32), nullable=False)
    item_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    tracking_id = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="REQUEST")
    notes = db.Column(db.Text, nullable=True)
    reorder_of_id = db.Column(db.Integer, db.ForeignKey("uniform_requests.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    staff = db.relationship("Staff", backref=db.backref("uniform_requests", lazy=True))
    stock_item = db.relationship("StockItem")
    reorder_of = db.relationship("UniformRequest", remote_side=[id])

    def __repr__(self) -> str:
        return f"<UniformRequest id={self.id} tracking_id={self.tracking_id!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "staff": {
                "display_name": self.staff.display_name,
                "role": self.staff.role,
            } if self.staff else None,
            "stock_item_id": self.stock_item_id,
            "ean": self.ean,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "tracking_id": self.tracking_id,
            "status": self.status,
            "notes": self.notes,
            "reorder_of_id": self.reorder_of_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Delivery(db.Model):
    """Delivery record created alongside a uniform request (store + staff + tracking id)."""
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("tracking_id", name="uq_deliveries_tracking_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    tracking_id = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "staff_id": self.staff_id,
            "tracking_id": self.tracking_id,
            "created_at": to_utc_z(self.created_at),
        }
