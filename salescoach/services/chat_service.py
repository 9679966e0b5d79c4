"""
Inbound chat: single-turn keyword intents answered from cached insights.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from salescoach.connectors.whatsapp import BaseMessagingProvider, SendResult
from salescoach.models.messaging import MessageDirection, DeliveryStatus, DeliveryLogEntry
from salescoach.services.insights_service import InsightsService
from salescoach.services.sales_data_source import SalesDataSource, normalize_phone
from salescoach.services.training_service import get_latest_snapshot, snapshot_in_month
from salescoach.utils.logger import log

PROFILE_NOT_FOUND = "Sorry, I couldn't find your profile. Please contact your administrator."
NOT_UNDERSTOOD = "Sorry, I didn't get that. Try asking about your goal, ranking or tips."
RANKING_NOT_FOUND = "I couldn't find your ranking right now."


class Intent(str, Enum):
    GOAL_GAP = "goal_gap"
    TIPS = "tips"
    RANKING = "ranking"
    FOCUS = "focus"
    AVG_TICKET = "avg_ticket"
    UNKNOWN = "unknown"


# First match wins
INTENT_KEYWORDS = [
    (Intent.GOAL_GAP, ("goal", "target", "meta", "falta")),
    (Intent.TIPS, ("tip", "help", "improve", "dica", "ajuda", "melhorar")),
    (Intent.RANKING, ("ranking", "rank", "position", "posição")),
    (Intent.FOCUS, ("focus", "priorit", "foco", "priorizar")),
    (Intent.AVG_TICKET, ("ticket",)),
]


def classify_intent(text: str) -> Intent:
    lowered = (text or "").lower()
    for intent, keywords in INTENT_KEYWORDS:
        if any(k in lowered for k in keywords):
            return intent
    return Intent.UNKNOWN


@dataclass
class ChatReply:
    success: bool
    intent: Intent
    response: str = ""
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "intent": self.intent.value,
            "response": self.response,
            "error_message": self.error_message,
        }


class ChatService:
    def __init__(self, db: Session, provider: BaseMessagingProvider):
        self.db = db
        self.provider = provider
        self.data_source = SalesDataSource(db)
        self.insights = InsightsService(db, self.data_source)

    async def handle_inbound(
        self,
        tenant_id: str,
        from_address: str,
        body: str,
        external_id: Optional[str] = None,
    ) -> ChatReply:
        """Log the inbound text, answer it, send the answer and log that too."""
        phone = normalize_phone(from_address)
        self._log(
            tenant_id,
            MessageDirection.INBOUND,
            from_address=phone,
            to_address=self.provider.sender_address,
            body=body or "",
            status=DeliveryStatus.RECEIVED.value,
            external_id=external_id,
        )
        self.db.commit()

        intent = classify_intent(body)
        seller = self.data_source.get_seller_by_phone(tenant_id, phone)
        if seller is None:
            log.info(f"Inbound message from unknown phone {phone} | tenant={tenant_id}")
            response = PROFILE_NOT_FOUND
            intent = Intent.UNKNOWN
        else:
            response = self.answer(intent, tenant_id, seller.id)
        log.info(f"Inbound message | tenant={tenant_id} | from={phone} | intent={intent.value}")

        try:
            outcome = await self.provider.send(phone, response, tenant_id)
        except Exception as e:
            log.error(f"Failed to send chat reply to {phone}: {str(e)}")
            outcome = SendResult(success=False, error_message=str(e))

        self._log(
            tenant_id,
            MessageDirection.OUTBOUND,
            from_address=self.provider.sender_address,
            to_address=phone,
            body=response,
            status=DeliveryStatus.SENT.value if outcome.success else DeliveryStatus.FAILED.value,
            external_id=outcome.external_id,
            error_message=outcome.error_message,
        )
        self.db.commit()

        return ChatReply(
            success=outcome.success,
            intent=intent,
            response=response,
            error_message=outcome.error_message,
        )

    def answer(self, intent: Intent, tenant_id: str, seller_id: str) -> str:
        if intent == Intent.UNKNOWN:
            return NOT_UNDERSTOOD

        if intent == Intent.RANKING:
            rankings = self._insights(tenant_id, None).get("rankings") or []
            mine = next((r for r in rankings if r.get("seller_id") == seller_id), None)
            if mine is None:
                return RANKING_NOT_FOUND
            return f"You are #{mine['rank']} with {Decimal(str(mine['total_sales'])):,.2f} in sales! 🎯"

        insights = self._insights(tenant_id, seller_id)
        if intent == Intent.GOAL_GAP:
            return (
                f"You have reached {Decimal(insights['goal_progress']):.1f}% of your goal! "
                f"{Decimal(insights['goal_gap']):,.2f} to go. Keep it up! 💪"
            )
        if intent == Intent.TIPS:
            tips = "\n".join(insights.get("suggestions") or [])
            return f"Here are some tips for you:\n\n{tips}"
        if intent == Intent.FOCUS:
            focus = "\n".join(insights.get("focus_areas") or [])
            return f"Your focus areas:\n\n{focus}"
        return (
            f"Your current average ticket is {Decimal(insights['avg_ticket']):,.2f}. "
            f"To raise it: offer complementary products, upsell and highlight premium items."
        )

    def _insights(self, tenant_id: str, seller_id: Optional[str]) -> Dict[str, Any]:
        snapshot = get_latest_snapshot(self.db, tenant_id, seller_id=seller_id)
        if snapshot_in_month(snapshot):
            return {
                "goal_progress": snapshot.goal_progress,
                "goal_gap": snapshot.goal_gap,
                "avg_ticket": snapshot.avg_ticket,
                "suggestions": snapshot.suggestions or [],
                "focus_areas": snapshot.focus_areas or [],
                "rankings": snapshot.rankings or [],
            }
        result = self.insights.calculate_insights(tenant_id, seller_id=seller_id)
        data = result.to_dict()
        data.update(goal_progress=result.goal_progress, goal_gap=result.goal_gap, avg_ticket=result.avg_ticket)
        return data

    def _log(self, tenant_id: str, direction: MessageDirection, **fields) -> DeliveryLogEntry:
        entry = DeliveryLogEntry(
            tenant_id=tenant_id,
            direction=direction.value,
            from_address=fields["from_address"],
            to_address=fields["to_address"],
            body_text=fields["body"],
            provider_name=self.provider.provider_name,
            external_id=fields.get("external_id"),
            status=fields["status"],
            error_message=fields.get("error_message"),
        )
        self.db.add(entry)
        return entry
