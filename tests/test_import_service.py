"""
Tests for record imports and dataset hashing.
"""
from datetime import date
from decimal import Decimal

import pytest

from salescoach.models.sales import Sale, Goal
from salescoach.models.tenant import Seller, Store
from salescoach.services.import_service import (
    DataImportService,
    _parse_amount,
    _parse_date,
    compute_data_hash,
)
from salescoach.services.training_service import ModelTrainingService, TrainingCheck, TrainingStatusTracker
from salescoach.utils.errors import TenantNotFoundError

from conftest import make_tenant

SELLERS = [
    {"code": "S1", "name": "Ana", "phone": "whatsapp:+55 11 90000-0001", "store": "North"},
    {"code": "S2", "name": "Bob", "phone": "5511900000002", "store": "South"},
]
SALES = [
    {"date": "2024-06-01", "seller_code": "S1", "total_value": "1.234,56"},
    {"date": "2024-06-02", "seller_code": "S2", "total_value": 80},
]
GOALS = [
    {"month": "2024-06", "seller_code": "S1", "target_value": 5000},
]


class TestHelpers:

    def test_hash_ignores_row_order(self):
        assert compute_data_hash(SELLERS, SALES, GOALS) == compute_data_hash(
            list(reversed(SELLERS)), list(reversed(SALES)), GOALS
        )

    def test_hash_changes_with_content(self):
        changed = [dict(SALES[0], total_value="1.234,57"), SALES[1]]
        assert compute_data_hash(SELLERS, SALES, GOALS) != compute_data_hash(SELLERS, changed, GOALS)

    @pytest.mark.parametrize("raw, expected", [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("R$ 99,90", Decimal("99.90")),
        (42, Decimal("42")),
    ])
    def test_parse_amount(self, raw, expected):
        assert _parse_amount(raw) == expected

    def test_parse_amount_rejects_garbage(self):
        with pytest.raises(ValueError):
            _parse_amount("abc")

    def test_parse_date_formats(self):
        assert _parse_date("2024-06-05") == date(2024, 6, 5)
        assert _parse_date("05/06/2024") == date(2024, 6, 5)
        assert _parse_date("2024-06") == date(2024, 6, 1)


class TestDataImportService:

    def test_unknown_tenant(self, db):
        with pytest.raises(TenantNotFoundError):
            DataImportService(db).import_records("missing", SELLERS, SALES, GOALS)

    def test_import_creates_rows_and_records_hash(self, db):
        tenant = make_tenant(db)
        result = DataImportService(db).import_records(tenant.id, SELLERS, SALES, GOALS)

        assert (result.sellers, result.sales, result.goals, result.skipped) == (2, 2, 1, 0)
        assert result.training_needed is True
        assert result.data_hash == compute_data_hash(SELLERS, SALES, GOALS)

        ana = db.query(Seller).filter(Seller.code == "S1").one()
        assert ana.phone_e164 == "+5511900000001"
        assert {s.name for s in db.query(Store).all()} == {"North", "South"}

        sale = db.query(Sale).filter(Sale.seller_id == ana.id).one()
        assert sale.total_value == Decimal("1234.56")
        assert sale.store_id == ana.store_id

        goal = db.query(Goal).one()
        assert goal.month == date(2024, 6, 1)
        assert goal.store_id == ana.store_id

        status = TrainingStatusTracker(db).get_training_status(tenant.id)
        assert status.current_hash == result.data_hash

    def test_reimport_replaces_sales_in_range_and_upserts(self, db):
        tenant = make_tenant(db)
        service = DataImportService(db)
        service.import_records(tenant.id, SELLERS, SALES, GOALS)

        again = service.import_records(
            tenant.id,
            [{"code": "S1", "name": "Ana Maria", "store": "North"}],
            [{"date": "2024-06-01", "seller_code": "S1", "total_value": 10}],
            [{"month": "2024-06-15", "seller_code": "S1", "target_value": 6000}],
        )

        assert again.sales == 1
        # only the 2024-06-01 sale fell inside the new batch's range
        assert db.query(Sale).count() == 2
        assert db.query(Seller).count() == 2
        assert db.query(Seller).filter(Seller.code == "S1").one().name == "Ana Maria"
        assert db.query(Goal).count() == 1
        assert db.query(Goal).one().target_value == Decimal("6000")

    def test_bad_rows_are_skipped(self, db):
        tenant = make_tenant(db)
        result = DataImportService(db).import_records(
            tenant.id,
            SELLERS + [{"code": "", "name": "Nobody"}],
            SALES + [
                {"date": "2024-06-03", "seller_code": "S9", "total_value": 10},
                {"date": "not a date", "seller_code": "S1", "total_value": 10},
                {"date": "2024-06-03", "seller_code": "S1", "total_value": -5},
            ],
            GOALS,
        )

        assert result.sellers == 2
        assert result.sales == 2
        assert result.skipped == 4
        assert any("Unknown seller code 'S9'" in e for e in result.errors)
        assert any(e.startswith("Seller row 3") for e in result.errors)

    def test_import_after_training_marks_needed(self, db):
        tenant = make_tenant(db)
        service = DataImportService(db)
        service.import_records(tenant.id, SELLERS, SALES, GOALS)
        ModelTrainingService(db).train(tenant.id, as_of=date(2024, 6, 10))
        assert TrainingStatusTracker(db).is_training_needed(tenant.id) == TrainingCheck.UP_TO_DATE

        same = service.import_records(tenant.id, SELLERS, SALES, GOALS)
        assert same.training_needed is False

        changed = service.import_records(
            tenant.id, [], [{"date": "2024-06-04", "seller_code": "S2", "total_value": 300}], []
        )
        assert changed.training_needed is True
