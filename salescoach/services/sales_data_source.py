"""
Sales Data Source

Time-windowed queries over tenants, sellers, sales and goals.
"""
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from salescoach.models.tenant import Tenant, Seller
from salescoach.models.sales import Sale, Goal
from salescoach.utils.errors import TenantNotFoundError


class SalesDataSource:
    def __init__(self, db: Session):
        self.db = db

    # ─────────────────────────────────────────────
    # TENANTS
    # ─────────────────────────────────────────────

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def require_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def get_active_tenant_ids(self) -> List[str]:
        rows = (
            self.db.query(Tenant.id)
            .filter(Tenant.is_active.is_(True))
            .order_by(Tenant.code)
            .all()
        )
        return [r.id for r in rows]

    # ─────────────────────────────────────────────
    # SALES
    # ─────────────────────────────────────────────

    def get_sales(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        store_id: Optional[str] = None,
        seller_id: Optional[str] = None,
    ) -> List[Sale]:
        """Sales in [start_date, end_date], oldest first, optionally scoped."""
        query = self.db.query(Sale).filter(
            Sale.tenant_id == tenant_id,
            Sale.sale_date >= start_date,
            Sale.sale_date <= end_date,
        )
        if seller_id:
            query = query.filter(Sale.seller_id == seller_id)
        elif store_id:
            query = query.filter(Sale.store_id == store_id)

        return query.order_by(Sale.sale_date, Sale.imported_at).all()

    def get_active_seller_ids(self, tenant_id: str, since: date) -> List[str]:
        """Sellers with at least one sale since `since`, ordered by seller code."""
        rows = (
            self.db.query(Sale.seller_id)
            .join(Seller, Seller.id == Sale.seller_id)
            .filter(Sale.tenant_id == tenant_id, Sale.sale_date >= since)
            .group_by(Sale.seller_id)
            .order_by(func.min(Seller.code))
            .all()
        )
        return [r.seller_id for r in rows]

    def get_active_store_ids(self, tenant_id: str, since: date) -> List[str]:
        rows = (
            self.db.query(Sale.store_id)
            .filter(
                Sale.tenant_id == tenant_id,
                Sale.sale_date >= since,
                Sale.store_id.isnot(None),
            )
            .distinct()
            .all()
        )
        return sorted(r.store_id for r in rows)

    # ─────────────────────────────────────────────
    # GOALS
    # ─────────────────────────────────────────────

    def get_goals(
        self,
        tenant_id: str,
        month: date,
        store_id: Optional[str] = None,
        seller_id: Optional[str] = None,
    ) -> List[Goal]:
        """
        Goals for the month of `month` in the requested scope.

        Seller scope uses the seller's own goals. Store and tenant scopes use
        the goals set at that level when any exist, and otherwise the sum of
        the goals below them, so a target is never counted twice.
        """
        month_start = month.replace(day=1)
        base = self.db.query(Goal).filter(
            Goal.tenant_id == tenant_id,
            Goal.month == month_start,
        )

        if seller_id:
            return base.filter(Goal.seller_id == seller_id).all()

        if store_id:
            scoped = base.filter(Goal.store_id == store_id)
            own = scoped.filter(Goal.seller_id.is_(None)).all()
            return own or scoped.all()

        own = base.filter(Goal.store_id.is_(None), Goal.seller_id.is_(None)).all()
        if own:
            return own
        store_level = base.filter(Goal.store_id.isnot(None), Goal.seller_id.is_(None)).all()
        if store_level:
            return store_level
        return base.filter(Goal.seller_id.isnot(None)).all()

    # ─────────────────────────────────────────────
    # SELLERS
    # ─────────────────────────────────────────────

    def get_sellers(self, tenant_id: str, seller_ids: Optional[Iterable[str]] = None) -> Dict[str, Seller]:
        query = self.db.query(Seller).filter(Seller.tenant_id == tenant_id)
        if seller_ids is not None:
            seller_ids = list(seller_ids)
            if not seller_ids:
                return {}
            query = query.filter(Seller.id.in_(seller_ids))
        return {s.id: s for s in query.all()}

    def get_active_sellers(self, tenant_id: str) -> List[Seller]:
        return (
            self.db.query(Seller)
            .filter(Seller.tenant_id == tenant_id, Seller.status == "active")
            .order_by(Seller.code)
            .all()
        )

    def get_seller_by_phone(self, tenant_id: str, phone_e164: str) -> Optional[Seller]:
        phone = normalize_phone(phone_e164)
        return (
            self.db.query(Seller)
            .filter(Seller.tenant_id == tenant_id, Seller.phone_e164 == phone)
            .first()
        )


def normalize_phone(value: str) -> str:
    """'whatsapp:+5511...' / '5511...' -> '+5511...'"""
    phone = (value or "").strip()
    if phone.startswith("whatsapp:"):
        phone = phone[len("whatsapp:"):]
    phone = phone.replace(" ", "").replace("-", "")
    if phone and not phone.startswith("+"):
        phone = "+" + phone
    return phone
