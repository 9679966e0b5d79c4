"""
Insights Service

Pure computation of coaching insights over the current-month window:
1. Totals (sales, transactions, average ticket)
2. Goal gap / progress (progress is exactly 0 when there is no target)
3. Month-end projection at the current daily pace
4. Seller ranking (stable on ties)
5. Focus areas and suggestions from fixed thresholds

The module-level functions take plain records and never touch the database,
so identical inputs always give identical outputs. InsightsService wires them
to the SalesDataSource for live computation.
"""
import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from salescoach.services.sales_data_source import SalesDataSource

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Threshold rules for focus areas and suggestions
VOLUME_GAP_RATIO = Decimal("0.7")        # total below 70% of target
LOW_TICKET_FOCUS = Decimal("100")
PROGRESS_CONVERSION_PCT = Decimal("70")
LOW_TICKET_SUGGESTION = Decimal("150")

FOCUS_INCREASE_VOLUME = "Increase sales volume"
FOCUS_AVG_TICKET = "Work on the average ticket"
FOCUS_COMPLEMENTARY = "Cross-sell complementary products"

SUGGEST_CONVERSION = "Focus on conversion - every customer counts!"
SUGGEST_BUNDLES = "Offer bundles and premium products"
SUGGEST_FREQUENT = "Keep in close contact with your frequent customers"


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class SellerRanking:
    seller_id: str
    seller_code: str
    seller_name: str
    total_sales: Decimal
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seller_id": self.seller_id,
            "seller_code": self.seller_code,
            "seller_name": self.seller_name,
            "total_sales": float(self.total_sales),
            "rank": self.rank,
        }


@dataclass
class InsightsResult:
    """Insight snapshot contents, before caching"""
    as_of: date
    total_sales: Decimal = ZERO
    transaction_count: int = 0
    avg_ticket: Decimal = ZERO
    goal_target: Decimal = ZERO
    goal_gap: Decimal = ZERO
    goal_progress: Decimal = ZERO
    projected_monthly: Decimal = ZERO
    rankings: List[SellerRanking] = field(default_factory=list)
    focus_areas: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "total_sales": float(self.total_sales),
            "transaction_count": self.transaction_count,
            "avg_ticket": float(self.avg_ticket),
            "goal_target": float(self.goal_target),
            "goal_gap": float(self.goal_gap),
            "goal_progress": float(self.goal_progress),
            "projected_monthly": float(self.projected_monthly),
            "rankings": [r.to_dict() for r in self.rankings],
            "focus_areas": list(self.focus_areas),
            "suggestions": list(self.suggestions),
            "calculated_at": self.calculated_at.isoformat(),
        }


def month_window(as_of: date) -> Tuple[date, date]:
    """First day of as_of's month through as_of (inclusive)."""
    return as_of.replace(day=1), as_of


def goal_progress_pct(total: Decimal, target: Decimal) -> Decimal:
    """total / target * 100, defined as exactly 0 when there is no target."""
    if target <= ZERO:
        return ZERO
    return _money(total / target * 100)


def project_monthly(total: Decimal, days_elapsed: int, days_in_month: int) -> Decimal:
    """Month-end total at the current daily pace; 0 before any day has elapsed."""
    if days_elapsed <= 0:
        return ZERO
    return _money(total / days_elapsed * days_in_month)


def generate_rankings(sales: Iterable, sellers: Optional[Dict[str, Any]] = None) -> List[SellerRanking]:
    """
    Group sales by seller, sort by total descending and assign 1-based ranks.

    Sellers with equal totals keep the order in which they first appear in
    `sales` (sorted() is stable).
    """
    sellers = sellers or {}
    totals: Dict[str, Decimal] = {}
    for sale in sales:
        totals[sale.seller_id] = totals.get(sale.seller_id, ZERO) + Decimal(sale.total_value or 0)

    rankings = []
    for seller_id, total in totals.items():
        seller = sellers.get(seller_id)
        rankings.append(SellerRanking(
            seller_id=seller_id,
            seller_code=seller.code if seller else seller_id,
            seller_name=seller.name if seller else "Seller",
            total_sales=_money(total),
        ))

    rankings = sorted(rankings, key=lambda r: r.total_sales, reverse=True)
    for index, ranking in enumerate(rankings, start=1):
        ranking.rank = index
    return rankings


def generate_focus_areas(total_sales: Decimal, goal_target: Decimal, avg_ticket: Decimal) -> List[str]:
    areas = []
    if total_sales < goal_target * VOLUME_GAP_RATIO:
        areas.append(FOCUS_INCREASE_VOLUME)
    if avg_ticket < LOW_TICKET_FOCUS:
        areas.append(FOCUS_AVG_TICKET)
    areas.append(FOCUS_COMPLEMENTARY)
    return areas


def generate_suggestions(goal_progress: Decimal, avg_ticket: Decimal) -> List[str]:
    suggestions = []
    if goal_progress < PROGRESS_CONVERSION_PCT:
        suggestions.append(SUGGEST_CONVERSION)
    if avg_ticket < LOW_TICKET_SUGGESTION:
        suggestions.append(SUGGEST_BUNDLES)
    suggestions.append(SUGGEST_FREQUENT)
    return suggestions


def calculate_insights(
    sales: Iterable,
    goals: Iterable,
    as_of: date,
    sellers: Optional[Dict[str, Any]] = None,
) -> InsightsResult:
    """
    Compute insights from in-window records.

    Args:
        sales: records with `seller_id` and `total_value` (one per transaction)
        goals: records with `target_value`
        as_of: last day of the window; its month sets the projection basis
        sellers: optional seller_id -> Seller lookup for ranking labels

    Returns:
        InsightsResult (not yet cached)
    """
    sales = list(sales)
    goals = list(goals)

    total_sales = sum((Decimal(s.total_value or 0) for s in sales), ZERO)
    transaction_count = len(sales)
    avg_ticket = _money(total_sales / transaction_count) if transaction_count else ZERO

    goal_target = sum((Decimal(g.target_value or 0) for g in goals), ZERO)
    goal_gap = goal_target - total_sales
    goal_progress = goal_progress_pct(total_sales, goal_target)

    start, end = month_window(as_of)
    days_elapsed = (end - start).days + 1
    days_in_month = calendar.monthrange(as_of.year, as_of.month)[1]
    projected = project_monthly(total_sales, days_elapsed, days_in_month)

    return InsightsResult(
        as_of=as_of,
        total_sales=_money(total_sales),
        transaction_count=transaction_count,
        avg_ticket=avg_ticket,
        goal_target=_money(goal_target),
        goal_gap=_money(goal_gap),
        goal_progress=goal_progress,
        projected_monthly=projected,
        rankings=generate_rankings(sales, sellers),
        focus_areas=generate_focus_areas(total_sales, goal_target, avg_ticket),
        suggestions=generate_suggestions(goal_progress, avg_ticket),
    )


class InsightsService:
    """Live insight computation for a tenant, store or seller"""

    def __init__(self, db: Session, data_source: Optional[SalesDataSource] = None):
        self.db = db
        self.data_source = data_source or SalesDataSource(db)

    def calculate_insights(
        self,
        tenant_id: str,
        store_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> InsightsResult:
        """Compute insights for the month containing `as_of` (default today)."""
        as_of = as_of or date.today()
        start, end = month_window(as_of)

        sales = self.data_source.get_sales(
            tenant_id, start, end, store_id=store_id, seller_id=seller_id
        )
        goals = self.data_source.get_goals(
            tenant_id, start, store_id=store_id, seller_id=seller_id
        )
        sellers = self.data_source.get_sellers(tenant_id, {s.seller_id for s in sales})

        return calculate_insights(sales, goals, as_of, sellers)
