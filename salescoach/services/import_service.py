"""
Sales Data Import Service

Imports sellers, sales and goals for a tenant from already-parsed records
(dicts, e.g. a JSON body). Spreadsheet parsing is left to the caller.

Every import recomputes the dataset hash and records it on the training
tracker, which is what makes the next training run notice the change.
"""
import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from salescoach.models.tenant import Store, Seller
from salescoach.models.sales import Sale, Goal
from salescoach.services.sales_data_source import SalesDataSource, normalize_phone
from salescoach.services.training_service import TrainingStatusTracker
from salescoach.utils.cache import clear_for_tenant
from salescoach.utils.logger import log


@dataclass
class ImportResult:
    tenant_id: str
    sellers: int = 0
    sales: int = 0
    goals: int = 0
    skipped: int = 0
    data_hash: str = ""
    training_needed: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "sellers": self.sellers,
            "sales": self.sales,
            "goals": self.goals,
            "skipped": self.skipped,
            "data_hash": self.data_hash,
            "training_needed": self.training_needed,
            "errors": self.errors[:20],
        }


def compute_data_hash(sellers: List[Dict], sales: List[Dict], goals: List[Dict]) -> str:
    """sha256 over the canonical JSON of the imported records (order-insensitive)."""
    def canonical(rows):
        return sorted(json.dumps(r, sort_keys=True, default=str) for r in rows)

    payload = json.dumps(
        {"sellers": canonical(sellers), "sales": canonical(sales), "goals": canonical(goals)},
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DataImportService:
    def __init__(self, db: Session, tracker: Optional[TrainingStatusTracker] = None):
        self.db = db
        self.data_source = SalesDataSource(db)
        self.tracker = tracker or TrainingStatusTracker(db)
        self._stores: Dict[str, Store] = {}
        self._sellers: Dict[str, Seller] = {}

    def import_records(
        self,
        tenant_id: str,
        sellers: Optional[List[Dict]] = None,
        sales: Optional[List[Dict]] = None,
        goals: Optional[List[Dict]] = None,
    ) -> ImportResult:
        """
        Upsert sellers and goals, replace sales over the imported date range.

        Bad rows are skipped and reported in `errors`; the rest of the import
        still commits. Raises TenantNotFoundError for an unknown tenant.
        """
        self.data_source.require_tenant(tenant_id)
        sellers, sales, goals = sellers or [], sales or [], goals or []
        result = ImportResult(tenant_id=tenant_id)

        self._stores = {s.name: s for s in self.db.query(Store).filter(Store.tenant_id == tenant_id)}
        self._sellers = {s.code: s for s in self.db.query(Seller).filter(Seller.tenant_id == tenant_id)}

        for i, row in enumerate(sellers, start=1):
            try:
                self._upsert_seller(tenant_id, row)
                result.sellers += 1
            except Exception as e:
                result.errors.append(f"Seller row {i}: {str(e)}")
                result.skipped += 1

        parsed_sales = []
        for i, row in enumerate(sales, start=1):
            try:
                parsed_sales.append(self._parse_sale(tenant_id, row))
            except Exception as e:
                result.errors.append(f"Sale row {i}: {str(e)}")
                result.skipped += 1

        if parsed_sales:
            first = min(s.sale_date for s in parsed_sales)
            last = max(s.sale_date for s in parsed_sales)
            replaced = (
                self.db.query(Sale)
                .filter(Sale.tenant_id == tenant_id, Sale.sale_date >= first, Sale.sale_date <= last)
                .delete(synchronize_session=False)
            )
            if replaced:
                log.info(f"Replacing {replaced} existing sales between {first} and {last} | tenant={tenant_id}")
            imported_at = datetime.utcnow()
            for sale in parsed_sales:
                sale.imported_at = imported_at
                self.db.add(sale)
            result.sales = len(parsed_sales)

        for i, row in enumerate(goals, start=1):
            try:
                self._upsert_goal(tenant_id, row)
                result.goals += 1
            except Exception as e:
                result.errors.append(f"Goal row {i}: {str(e)}")
                result.skipped += 1

        result.data_hash = compute_data_hash(sellers, sales, goals)
        self.tracker.record_import(tenant_id, result.data_hash)
        self.db.commit()
        clear_for_tenant(tenant_id)

        result.training_needed = self.tracker.get_training_status(tenant_id).training_needed
        log.info(
            f"Import completed | tenant={tenant_id} | sellers={result.sellers} | sales={result.sales} | "
            f"goals={result.goals} | skipped={result.skipped} | training_needed={result.training_needed}"
        )
        return result

    # ─────────────────────────────────────────────
    # ROWS
    # ─────────────────────────────────────────────

    def _store(self, tenant_id: str, name: Optional[str]) -> Optional[Store]:
        name = (name or "").strip()
        if not name:
            return None
        store = self._stores.get(name)
        if store is None:
            store = Store(tenant_id=tenant_id, name=name)
            self.db.add(store)
            self.db.flush()
            self._stores[name] = store
        return store

    def _seller(self, code) -> Seller:
        code = str(code or "").strip()
        seller = self._sellers.get(code)
        if seller is None:
            raise ValueError(f"Unknown seller code '{code}'")
        return seller

    def _upsert_seller(self, tenant_id: str, row: Dict) -> Seller:
        code = str(row.get("code") or "").strip()
        name = str(row.get("name") or "").strip()
        if not code:
            raise ValueError("Empty seller code")
        if not name:
            raise ValueError("Empty seller name")

        store = self._store(tenant_id, row.get("store"))
        phone = normalize_phone(row.get("phone") or "") or None

        seller = self._sellers.get(code)
        if seller is None:
            seller = Seller(tenant_id=tenant_id, code=code)
            self.db.add(seller)
            self._sellers[code] = seller
        seller.name = name
        seller.store_id = store.id if store else None
        seller.phone_e164 = phone
        seller.email = row.get("email") or None
        seller.status = str(row.get("status") or "active").strip().lower()
        self.db.flush()
        return seller

    def _parse_sale(self, tenant_id: str, row: Dict) -> Sale:
        seller = self._seller(row.get("seller_code"))
        value = _parse_amount(row.get("total_value"))
        if value < 0:
            raise ValueError(f"Negative sale value {value}")
        store = self._store(tenant_id, row.get("store"))
        return Sale(
            tenant_id=tenant_id,
            store_id=store.id if store else seller.store_id,
            seller_id=seller.id,
            sale_date=_parse_date(row.get("date")),
            total_value=value,
            items_qty=int(row.get("items_qty") or 1),
            category=row.get("category") or None,
        )

    def _upsert_goal(self, tenant_id: str, row: Dict) -> Goal:
        month = _parse_date(row.get("month")).replace(day=1)
        seller = self._seller(row["seller_code"]) if row.get("seller_code") else None
        store = self._store(tenant_id, row.get("store"))
        store_id = store.id if store else None
        seller_id = seller.id if seller else None
        if seller is not None and store_id is None:
            store_id = seller.store_id

        target = _parse_amount(row.get("target_value"))
        ticket = row.get("target_ticket")

        goal = (
            self.db.query(Goal)
            .filter(
                Goal.tenant_id == tenant_id,
                Goal.month == month,
                Goal.store_id.is_(None) if store_id is None else Goal.store_id == store_id,
                Goal.seller_id.is_(None) if seller_id is None else Goal.seller_id == seller_id,
            )
            .first()
        )
        if goal is None:
            goal = Goal(tenant_id=tenant_id, month=month, store_id=store_id, seller_id=seller_id)
            self.db.add(goal)
        goal.target_value = target
        goal.target_ticket = _parse_amount(ticket) if ticket not in (None, "") else None
        goal.imported_at = datetime.utcnow()
        self.db.flush()
        return goal


def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("Empty date value")
    for fmt in ["%Y-%m-%d", "%d/%m/%Y", "%Y-%m", "%Y/%m/%d"]:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Cannot parse date from '{raw}'")


def _parse_amount(value) -> Decimal:
    """Parse money, accepting '1.234,56' and '1,234.56' style strings."""
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    raw = str(value or "").strip().replace("R$", "").replace("$", "").replace(" ", "")
    if not raw:
        raise ValueError("Empty amount value")
    if "," in raw and "." in raw:
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        raw = raw.replace(",", ".")
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"Cannot parse amount from '{value}'")
