from __future__ import annotations

from ..extensions import db
from d1store.time_utils import to_utc_z, utcnow


STAFF_ROLES = ("STAFF", "MANAGER", "CASUAL")


class Store(db.Model):
    """
    Retail store that staff belong to.

    Store names are compared by normalized key during imports, so
    "Sydney  CBD" and "sydney cbd" resolve to the same row. The raw-name
    unique constraint only backstops exact duplicates.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_stores_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Staff(db.Model):
    """
    Staff member who can be issued uniforms.

    uniform_limit is the cumulative allowance across all non-cancelled
    requests. NULL means unlimited.
    """
    __tablename__ = "staff"
    __table_args__ = (
        db.CheckConstraint("uniform_limit IS NULL OR uniform_limit > 0", name="ck_staff_uniform_limit_positive"),
        db.Index("ix_staff_store_display_name", "store_id", "display_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="STAFF")
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    uniform_limit = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    store = db.relationship("Store", backref=db.backref("staff", lazy=True))

    def __repr__(self) -> str:
        return f"<Staff id={self.id} display_name={self.display_name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": self.role,
            "store_id": self.store_id,
            "store_name": self.store.name if self.store else None,
            "uniform_limit": self.uniform_limit,
            "created_at": to_utc_z(self.created_at),
        }
