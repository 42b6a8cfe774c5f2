"""
CSV import reconciliation tests.

Verifies:
- Validation errors carry the physical file line and are grouped in the summary
- Re-importing the same file creates nothing (database duplicates are skipped)
- Duplicates inside one file are skipped after the first occurrence
- Colliding stock EANs are renumbered with a notice
- A failed row save is isolated and does not poison later rows
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from d1store.models import Staff, StockItem, Store
from d1store.services import import_service
from d1store.services.import_schemas import StaffImportSchema, StockImportSchema, next_free_ean
from d1store.services.import_service import (
    DB_SAVE_FAILED,
    PARSE_FAILED,
    ImportRejectedError,
    run_import,
    summarize_errors,
)


STAFF_CSV = (
    "Display Name,Store,Role,Uniform Limit\n"
    "Alex Smith,Sydney CBD,staff,3\n"
    "Sam Lee,Parramatta,Manager,\n"
)


def _assert_counts_add_up(result):
    assert result.total == result.success + result.skipped + result.failed


# =============================================================================
# STAFF IMPORT
# =============================================================================


class TestStaffImport:

    def test_creates_staff_and_stores(self, db_session):
        result = run_import("staff", "staff.csv", STAFF_CSV)

        assert (result.total, result.valid, result.success, result.skipped, result.failed) == (2, 2, 2, 0, 0)
        alex = db_session.query(Staff).filter_by(display_name="Alex Smith").one()
        assert alex.role == "STAFF"
        assert alex.uniform_limit == 3
        assert alex.store.name == "Sydney CBD"
        sam = db_session.query(Staff).filter_by(display_name="Sam Lee").one()
        assert sam.role == "MANAGER"
        assert sam.uniform_limit is None
        assert db_session.query(Store).count() == 2

    def test_header_aliases_are_accepted(self, db_session):
        text = "display_name,store name,ROLE\nJo,Bondi,casual\n"
        result = run_import("staff", "staff.csv", text)
        assert result.success == 1
        assert db_session.query(Staff).one().role == "CASUAL"

    def test_reimport_is_idempotent(self, db_session):
        run_import("staff", "staff.csv", STAFF_CSV)
        again = run_import("staff", "staff.csv", STAFF_CSV)

        assert again.success == 0
        assert again.skipped == 2
        assert again.failed == 0
        assert {tuple(r.errors) for r in again.invalid_rows} == {("Duplicate staff name (database)",)}
        assert db_session.query(Staff).count() == 2
        _assert_counts_add_up(again)

    def test_duplicate_within_file_is_skipped(self, db_session):
        text = (
            "Display Name,Store,Role\n"
            "Alex Smith,Sydney CBD,staff\n"
            "  alex   SMITH ,Bondi,staff\n"
        )
        result = run_import("staff", "staff.csv", text)

        assert result.success == 1
        assert result.skipped == 1
        assert result.invalid_rows[0].row_number == 3
        assert result.invalid_rows[0].errors == ["Duplicate staff name (file)"]
        # The skipped row must not leave its store behind
        assert db_session.query(Store).count() == 1

    def test_store_names_match_by_normalized_key(self, db_session):
        db_session.add(Store(name="Sydney CBD"))
        db_session.commit()
        text = "Display Name,Store,Role\nA,sydney  cbd,staff\nB,SYDNEY CBD,staff\n"

        result = run_import("staff", "staff.csv", text)

        assert result.success == 2
        assert db_session.query(Store).count() == 1

    def test_validation_errors_use_file_line_numbers(self, db_session):
        text = (
            "Display Name,Store,Role,Uniform Limit\n"
            "Alex,,staff,\n"
            "Sam,Bondi,boss,\n"
            "\n"
            "Jo,,staff,0\n"
        )
        result = run_import("staff", "staff.csv", text)

        assert result.failed == 3
        assert result.success == 0
        assert [r.row_number for r in result.invalid_rows] == [2, 3, 5]
        assert result.invalid_rows[2].errors == ["Missing store", "Uniform limit must be a positive integer"]
        assert summarize_errors(result.invalid_rows) == [
            "Missing store (2 rows: 2, 5)",
            "Row 3: Role must be staff, manager, or casual",
            "Row 5: Uniform limit must be a positive integer",
        ]
        _assert_counts_add_up(result)

    def test_failed_save_is_isolated(self, db_session, monkeypatch):
        real_create = StaffImportSchema.create_staff
        calls = {"n": 0}

        def flaky(self, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise SQLAlchemyError("disk full")
            return real_create(self, **kwargs)

        monkeypatch.setattr(StaffImportSchema, "create_staff", flaky)
        text = (
            "Display Name,Store,Role\n"
            "Alex Smith,Sydney CBD,staff\n"
            "Alex Smith,Sydney CBD,staff\n"
            "Sam Lee,Sydney CBD,staff\n"
        )
        result = run_import("staff", "staff.csv", text)

        assert result.failed == 1
        assert result.success == 2
        assert result.invalid_rows[0].row_number == 2
        assert result.invalid_rows[0].errors == [DB_SAVE_FAILED]
        # The failed row's store and name were forgotten, so row 3 created both
        assert db_session.query(Staff).count() == 2
        assert db_session.query(Store).count() == 1
        _assert_counts_add_up(result)


# =============================================================================
# STOCK IMPORT
# =============================================================================


class TestStockImport:

    def test_creates_items(self, db_session):
        text = "EAN,Name,Qty\n9300000000001,Polo Shirt M,10\n9300000000002,Cap,0\n"
        result = run_import("stock", "stock.csv", text)

        assert result.success == 2
        cap = db_session.query(StockItem).filter_by(name="Cap").one()
        assert cap.qty == 0
        assert cap.ean == "9300000000002"

    def test_validation_messages(self, db_session):
        text = "EAN,Name,Qty\n,Polo,1\n12a,Cap,1\n123,,\n124,Jacket,-1\n"
        result = run_import("stock", "stock.csv", text)

        assert result.failed == 4
        errors = {r.row_number: r.errors for r in result.invalid_rows}
        assert errors == {
            2: ["Missing EAN"],
            3: ["EAN must contain digits only"],
            4: ["Missing Name", "Missing Qty"],
            5: ["Qty must be a non-negative integer"],
        }

    def test_colliding_ean_is_renumbered_with_notice(self, db_session):
        db_session.add(StockItem(ean="123", name="Polo Shirt", qty=4))
        db_session.commit()
        text = "EAN,Name,Qty\n123,Cap,5\n124,Jacket,2\n"

        result = run_import("stock", "stock.csv", text)

        assert result.success == 2
        assert db_session.query(StockItem).filter_by(name="Cap").one().ean == "124"
        assert db_session.query(StockItem).filter_by(name="Jacket").one().ean == "125"
        assert result.notices == [
            "Row 2: EAN 123 is already in use; 'Cap' was created with EAN 124",
            "Row 3: EAN 124 is already in use; 'Jacket' was created with EAN 125",
        ]
        assert result.to_dict()["notices"] == result.notices

    def test_duplicate_name_is_skipped(self, db_session):
        db_session.add(StockItem(ean="1", name="Polo Shirt", qty=4))
        db_session.commit()
        text = "EAN,Name,Qty\n2, polo  SHIRT ,3\n3,Cap,1\n4,cap,1\n"

        result = run_import("stock", "stock.csv", text)

        assert result.success == 1
        assert result.skipped == 2
        assert result.failed == 0
        assert [r.errors for r in result.invalid_rows] == [
            ["Duplicate stock name (database)"],
            ["Duplicate stock name (file)"],
        ]
        assert db_session.query(StockItem).filter_by(ean="1").one().qty == 4
        _assert_counts_add_up(result)

    def test_reimport_is_idempotent(self, db_session):
        text = "EAN,Name,Qty\n1,Polo,1\n2,Cap,1\n"
        run_import("stock", "stock.csv", text)
        again = run_import("stock", "stock.csv", text)

        assert again.success == 0
        assert again.skipped == 2
        assert db_session.query(StockItem).count() == 2

    def test_failed_save_frees_name_for_later_row(self, db_session, monkeypatch):
        real_create = StockImportSchema.create_item
        calls = {"n": 0}

        def flaky(self, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise SQLAlchemyError("connection reset")
            return real_create(self, **kwargs)

        monkeypatch.setattr(StockImportSchema, "create_item", flaky)
        result = run_import("stock", "stock.csv", "EAN,Name,Qty\n1,Cap,1\n2,Cap,3\n")

        assert result.failed == 1
        assert result.success == 1
        assert result.invalid_rows[0].errors == [DB_SAVE_FAILED]
        assert db_session.query(StockItem).one().ean == "2"

    def test_semicolon_file(self, db_session):
        result = run_import("stock", "stock.csv", "EAN;Name;Qty\n1;Polo;2\n")
        assert result.success == 1

    def test_empty_file_has_zero_counts(self, db_session):
        result = run_import("stock", "stock.csv", "")
        assert (result.total, result.success, result.skipped, result.failed) == (0, 0, 0, 0)
        assert result.to_dict()["errors"] == []
        assert "notices" not in result.to_dict()


class TestNextFreeEan:

    def test_skips_used_values(self):
        assert next_free_ean("123", {"123", "124"}) == "125"

    def test_keeps_leading_zeros(self):
        assert next_free_ean("0099", {"0099"}) == "0100"

    def test_grows_past_width(self):
        assert next_free_ean("999", {"999"}) == "1000"


# =============================================================================
# UPLOAD REJECTION
# =============================================================================


class TestUploadRejection:

    def test_non_csv_is_rejected(self, db_session):
        with pytest.raises(ImportRejectedError, match="Please upload a CSV file"):
            run_import("stock", "stock.xlsx", "EAN,Name,Qty\n1,A,1\n")

    def test_missing_file_name_is_rejected(self, db_session):
        with pytest.raises(ImportRejectedError, match="No file uploaded"):
            run_import("stock", None, "")

    def test_unknown_import_type(self, db_session):
        with pytest.raises(ImportRejectedError):
            run_import("vendors", "v.csv", "a\n1\n")

    def test_unparsable_csv(self, db_session):
        with pytest.raises(ImportRejectedError) as excinfo:
            run_import("stock", "stock.csv", 'EAN,Name,Qty\n1,"Polo,1\n')
        payload = excinfo.value.to_dict()
        assert payload["errors"] == [PARSE_FAILED]
        assert payload["summary"]["total"] == 0

    def test_rejection_writes_nothing(self, db_session):
        with pytest.raises(ImportRejectedError):
            import_service.run_import("staff", "staff.txt", STAFF_CSV)
        assert db_session.query(Staff).count() == 0
