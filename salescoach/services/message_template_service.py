"""
Message Draft Generator

Renders one coaching message per seller for a moment of the day. Values come
from the latest cached seller snapshot; when none covers the current month
the insights are computed live. Optional LLM rendering falls back to the template
on any failure.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from salescoach.models.messaging import Moment
from salescoach.services.insights_service import InsightsService
from salescoach.services.llm_service import LLMService
from salescoach.services.sales_data_source import SalesDataSource
from salescoach.services.training_service import get_latest_snapshot, snapshot_in_month
from salescoach.utils.logger import log

DEFAULT_TIP = "Stay focused!"

LLM_PROMPTS = {
    Moment.MORNING: "Write a short good-morning coaching message for a salesperson about their monthly goal.",
    Moment.MIDDAY: "Write a short midday check-in for a salesperson about their average ticket.",
    Moment.EVENING: "Write a short end-of-day message for a salesperson celebrating today's sales.",
}


@dataclass
class DraftMessage:
    seller_id: str
    recipient_name: str
    recipient_address: str
    body_text: str
    moment: Moment

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seller_id": self.seller_id,
            "recipient_name": self.recipient_name,
            "recipient_address": self.recipient_address,
            "body_text": self.body_text,
            "moment": self.moment.value,
        }


def _fmt_money(value) -> str:
    return f"{Decimal(value or 0):,.2f}"


def _fmt_pct(value) -> str:
    return f"{Decimal(value or 0):.0f}"


def render_template(moment: Moment, insights: Dict[str, Any], name: Optional[str] = None) -> str:
    """Fixed text per moment, filled from an insights dict."""
    greeting_name = f", {name.split()[0]}" if name else ""

    if moment == Moment.MORNING:
        tips = insights.get("suggestions") or []
        return (
            f"Good morning{greeting_name}! 🌅\n\n"
            f"You are at {_fmt_pct(insights.get('goal_progress'))}% of your monthly goal.\n"
            f"{_fmt_money(insights.get('goal_gap'))} to go.\n\n"
            f"Tip of the day: {tips[0] if tips else DEFAULT_TIP}\n\n"
            f"Let's go! 💪"
        )
    if moment == Moment.MIDDAY:
        return (
            f"Lunch time{greeting_name}! ⏰\n\n"
            f"How is it going? Average ticket so far: {_fmt_money(insights.get('avg_ticket'))}\n\n"
            f"Remember: every sale counts. Keep it up! 🎯"
        )
    return (
        f"End of the day{greeting_name}! 🌙\n\n"
        f"Sales this month: {_fmt_money(insights.get('total_sales'))}\n"
        f"Goal progress: {_fmt_pct(insights.get('goal_progress'))}%\n\n"
        f"Great work, rest well and see you tomorrow! 👏"
    )


class DraftGenerator:
    def __init__(
        self,
        db: Session,
        insights_service: Optional[InsightsService] = None,
        llm_service: Optional[LLMService] = None,
    ):
        self.db = db
        self.data_source = SalesDataSource(db)
        self.insights = insights_service or InsightsService(db, self.data_source)
        self.llm = llm_service

    def generate_all(self, moment: Moment, tenant_id: str, as_of: Optional[date] = None) -> List[DraftMessage]:
        """
        One draft per active seller with a phone number.

        A seller whose draft cannot be built is logged and left out; the
        others are still returned.
        """
        moment = Moment.parse(moment)
        drafts = []

        for seller in self.data_source.get_active_sellers(tenant_id):
            if not seller.phone_e164:
                log.debug(f"Seller {seller.code} has no phone, skipping draft")
                continue
            try:
                insights = self._seller_insights(tenant_id, seller.id, as_of)
                body = self.render(moment, insights, seller.name)
                drafts.append(DraftMessage(
                    seller_id=seller.id,
                    recipient_name=seller.name,
                    recipient_address=seller.phone_e164,
                    body_text=body,
                    moment=moment,
                ))
            except Exception as e:
                log.error(f"Failed to build {moment.value} draft for seller {seller.code}: {str(e)}")

        log.info(f"Generated {len(drafts)} {moment.value} drafts | tenant={tenant_id}")
        return drafts

    def render(self, moment: Moment, insights: Dict[str, Any], name: Optional[str] = None) -> str:
        template_text = render_template(moment, insights, name)
        if self.llm is None or not self.llm.enabled:
            return template_text

        context = {
            "seller_name": name or "",
            "goal_progress_pct": _fmt_pct(insights.get("goal_progress")),
            "goal_gap": _fmt_money(insights.get("goal_gap")),
            "avg_ticket": _fmt_money(insights.get("avg_ticket")),
            "total_sales": _fmt_money(insights.get("total_sales")),
            "suggestions": insights.get("suggestions") or [],
            "template_message": template_text,
        }
        try:
            text = self.llm.generate(LLM_PROMPTS[moment], context)
        except Exception as e:
            log.error(f"LLM rendering failed, using template: {str(e)}")
            text = None
        if not text or not text.strip():
            log.debug("LLM unavailable for draft, using template")
            return template_text
        return text.strip()

    def _seller_insights(self, tenant_id: str, seller_id: str, as_of: Optional[date]) -> Dict[str, Any]:
        snapshot = get_latest_snapshot(self.db, tenant_id, seller_id=seller_id)
        if snapshot_in_month(snapshot, as_of):
            return {
                "total_sales": snapshot.total_sales,
                "avg_ticket": snapshot.avg_ticket,
                "goal_gap": snapshot.goal_gap,
                "goal_progress": snapshot.goal_progress,
                "suggestions": snapshot.suggestions or [],
            }

        log.warning(f"No current insights for seller {seller_id}, computing live | tenant={tenant_id}")
        live = self.insights.calculate_insights(tenant_id, seller_id=seller_id, as_of=as_of)
        return {
            "total_sales": live.total_sales,
            "avg_ticket": live.avg_ticket,
            "goal_gap": live.goal_gap,
            "goal_progress": live.goal_progress,
            "suggestions": live.suggestions,
        }
