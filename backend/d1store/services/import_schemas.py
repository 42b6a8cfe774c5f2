from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..extensions import db
from ..models import STAFF_ROLES, Staff, StockItem, Store
from .normalization import FieldResolver, FieldSpec, normalize_key


# Duplicate-detection keys. Earlier generations scoped staff names per store
# and keyed stock on EAN alone; these are the current rules.
STAFF_DUPLICATE_SCOPE = "global"  # or "store"

_DIGITS_RE = re.compile(r"[0-9]+")

ORIGIN_DATABASE = "database"
ORIGIN_FILE = "file"


@dataclass
class CandidateRow:
    """A row that passed validation. values are keyed by canonical field name."""
    row_number: int
    values: dict[str, str]
    raw: dict[str, str]


@dataclass
class RowOutcome:
    status: str  # CREATED | SKIPPED
    reason: str | None = None
    notice: str | None = None
    entity: Any = None

    @property
    def created(self) -> bool:
        return self.status == "CREATED"

    @classmethod
    def skipped(cls, reason: str) -> "RowOutcome":
        return cls(status="SKIPPED", reason=reason)


@dataclass
class ReconciliationAccumulator:
    """
    Known identity keys for one import batch.

    Seeded from the database before the first row, then extended as rows are
    created so later rows in the same file see earlier ones. Keys added while
    a row is in flight are staged; confirm() keeps them once the row commits,
    revert() removes them if the row's save fails.
    """
    stores: dict[str, int] = field(default_factory=dict)
    staff_names: dict[tuple[Any, str], str] = field(default_factory=dict)
    stock_names: dict[str, str] = field(default_factory=dict)
    stock_eans: set[str] = field(default_factory=set)
    _staged: list[tuple[Any, Any]] = field(default_factory=list)

    def stage(self, target: dict | set, key: Any, value: Any = None) -> None:
        if key in target:
            return
        if isinstance(target, set):
            target.add(key)
        else:
            target[key] = value
        self._staged.append((target, key))

    def confirm(self) -> None:
        self._staged.clear()

    def revert(self) -> None:
        for target, key in reversed(self._staged):
            if isinstance(target, set):
                target.discard(key)
            else:
                target.pop(key, None)
        self._staged.clear()


class BaseImportSchema:
    import_type: str = ""
    resolver: FieldResolver

    def validate_row(self, values: dict[str, str]) -> list[str]:
        raise NotImplementedError

    def load_existing(self, acc: ReconciliationAccumulator) -> None:
        raise NotImplementedError

    def post_row(self, row: CandidateRow, acc: ReconciliationAccumulator) -> RowOutcome:
        raise NotImplementedError


def _is_non_negative_int(text: str) -> bool:
    return _DIGITS_RE.fullmatch(text) is not None


class StaffImportSchema(BaseImportSchema):
    import_type = "staff"
    resolver = FieldResolver(
        [
            FieldSpec("display_name", ("displayName", "display name", "name", "staff name")),
            FieldSpec("store", ("store", "storeName", "store name")),
            FieldSpec("role", ("role", "staff role")),
            FieldSpec("uniform_limit", ("uniformLimit", "uniform limit", "limit")),
        ]
    )
    allowed_roles = {role.lower(): role for role in STAFF_ROLES}

    def validate_row(self, values: dict[str, str]) -> list[str]:
        errors: list[str] = []
        if not values["display_name"]:
            errors.append("Missing Display Name")
        if not values["store"]:
            errors.append("Missing store")
        role = values["role"].lower()
        if not role:
            errors.append("Missing role")
        elif role not in self.allowed_roles:
            errors.append("Role must be staff, manager, or casual")
        limit = values["uniform_limit"]
        if limit and (not _is_non_negative_int(limit) or int(limit) <= 0):
            errors.append("Uniform limit must be a positive integer")
        return errors

    def _staff_key(self, store_id: int | None, display_name: str) -> tuple[Any, str]:
        scope = store_id if STAFF_DUPLICATE_SCOPE == "store" else None
        return (scope, normalize_key(display_name))

    def load_existing(self, acc: ReconciliationAccumulator) -> None:
        for store_id, name in db.session.query(Store.id, Store.name).all():
            acc.stores[normalize_key(name)] = store_id
        for store_id, display_name in db.session.query(Staff.store_id, Staff.display_name).all():
            acc.staff_names[self._staff_key(store_id, display_name)] = ORIGIN_DATABASE

    def create_store(self, name: str) -> Store:
        store = Store(name=name)
        db.session.add(store)
        db.session.flush()
        return store

    def create_staff(self, *, display_name: str, role: str, store_id: int, uniform_limit: int | None) -> Staff:
        staff = Staff(display_name=display_name, role=role, store_id=store_id, uniform_limit=uniform_limit)
        db.session.add(staff)
        db.session.flush()
        return staff

    def post_row(self, row: CandidateRow, acc: ReconciliationAccumulator) -> RowOutcome:
        values = row.values
        store_key = normalize_key(values["store"])
        store_id = acc.stores.get(store_key)

        # Store scope: a store that does not exist yet cannot hold a duplicate.
        if store_id is not None or STAFF_DUPLICATE_SCOPE != "store":
            origin = acc.staff_names.get(self._staff_key(store_id, values["display_name"]))
            if origin:
                return RowOutcome.skipped(f"Duplicate staff name ({origin})")

        if store_id is None:
            store = self.create_store(values["store"].strip())
            store_id = store.id
            acc.stage(acc.stores, store_key, store_id)

        limit = values["uniform_limit"]
        staff = self.create_staff(
            display_name=values["display_name"],
            role=self.allowed_roles[values["role"].lower()],
            store_id=store_id,
            uniform_limit=int(limit) if limit else None,
        )
        acc.stage(acc.staff_names, self._staff_key(store_id, staff.display_name), ORIGIN_FILE)
        return RowOutcome(status="CREATED", entity=staff)


def next_free_ean(ean: str, used: set[str]) -> str:
    """
    Smallest EAN numerically greater than ean that is not in used.

    Keeps the original digit width (leading zeros included) until the value
    no longer fits, then grows by a digit.
    """
    width = len(ean)
    value = int(ean)
    while True:
        value += 1
        candidate = str(value).zfill(width)
        if candidate not in used:
            return candidate


class StockImportSchema(BaseImportSchema):
    """
    Stock rows create new StockItems.

    - Same name as an existing item (any EAN): skipped as a duplicate. A
      typo'd EAN must not create a second inventory line for one item.
    - Same EAN, different name: created under the next free EAN, with a
      notice describing the substitution.
    """
    import_type = "stock"
    resolver = FieldResolver(
        [
            FieldSpec("ean", ("ean", "ean code", "barcode")),
            FieldSpec("name", ("name", "item name", "stock name", "product name")),
            FieldSpec("qty", ("qty", "quantity", "stock qty")),
        ]
    )

    def validate_row(self, values: dict[str, str]) -> list[str]:
        errors: list[str] = []
        ean = values["ean"]
        if not ean:
            errors.append("Missing EAN")
        elif not _DIGITS_RE.fullmatch(ean):
            errors.append("EAN must contain digits only")
        if not values["name"]:
            errors.append("Missing Name")
        qty = values["qty"]
        if not qty:
            errors.append("Missing Qty")
        elif not _is_non_negative_int(qty):
            errors.append("Qty must be a non-negative integer")
        return errors

    def load_existing(self, acc: ReconciliationAccumulator) -> None:
        for ean, name in db.session.query(StockItem.ean, StockItem.name).all():
            acc.stock_names[normalize_key(name)] = ORIGIN_DATABASE
            acc.stock_eans.add(normalize_key(ean))

    def create_item(self, *, ean: str, name: str, qty: int) -> StockItem:
        item = StockItem(ean=ean, name=name, qty=qty)
        db.session.add(item)
        db.session.flush()
        return item

    def post_row(self, row: CandidateRow, acc: ReconciliationAccumulator) -> RowOutcome:
        ean = row.values["ean"]
        name = row.values["name"]
        name_key = normalize_key(name)

        origin = acc.stock_names.get(name_key)
        if origin:
            return RowOutcome.skipped(f"Duplicate stock name ({origin})")

        notice = None
        if normalize_key(ean) in acc.stock_eans:
            replacement = next_free_ean(ean, acc.stock_eans)
            notice = (
                f"Row {row.row_number}: EAN {ean} is already in use; "
                f"'{name}' was created with EAN {replacement}"
            )
            ean = replacement

        item = self.create_item(ean=ean, name=name, qty=int(row.values["qty"]))
        acc.stage(acc.stock_names, name_key, ORIGIN_FILE)
        acc.stage(acc.stock_eans, normalize_key(ean))
        return RowOutcome(status="CREATED", notice=notice, entity=item)


SCHEMAS: dict[str, BaseImportSchema] = {
    "staff": StaffImportSchema(),
    "stock": StockImportSchema(),
}
