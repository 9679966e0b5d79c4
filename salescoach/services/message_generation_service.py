"""
Scheduled message generation

Builds the drafts for a (tenant, moment) and either queues them for human
review or hands them back auto-approved, depending on the tenant's policy.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from salescoach.config import get_settings
from salescoach.models.messaging import Moment
from salescoach.models.tenant import Tenant
from salescoach.services.llm_service import LLMService
from salescoach.services.message_template_service import DraftGenerator, DraftMessage
from salescoach.services.review_service import ReviewService
from salescoach.services.sales_data_source import SalesDataSource
from salescoach.utils.logger import log

settings = get_settings()


def review_required(tenant: Tenant) -> bool:
    if tenant.review_required is not None:
        return tenant.review_required
    return settings.hitl_review_required


@dataclass
class GenerationResult:
    tenant_id: str
    moment: str
    success: bool = False
    messages_generated: int = 0
    messages_queued: int = 0
    failed_messages: int = 0
    auto_approved: bool = False
    error_message: Optional[str] = None
    drafts: List[DraftMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tenant_id": self.tenant_id,
            "moment": self.moment,
            "messages_generated": self.messages_generated,
            "messages_queued": self.messages_queued,
            "failed_messages": self.failed_messages,
            "auto_approved": self.auto_approved,
            "error_message": self.error_message,
        }


class MessageGenerationService:
    def __init__(
        self,
        db: Session,
        draft_generator: Optional[DraftGenerator] = None,
        review_service: Optional[ReviewService] = None,
    ):
        self.db = db
        self.data_source = SalesDataSource(db)
        self.drafts = draft_generator or DraftGenerator(db)
        self.reviews = review_service or ReviewService(db)

    def generate_scheduled_messages(self, moment, tenant_id: str) -> GenerationResult:
        """
        Generate drafts for every reachable seller of the tenant.

        Unknown tenants and moments raise ConfigurationError. A draft that
        cannot be queued is counted in failed_messages and the rest go on.
        """
        moment = Moment.parse(moment)
        tenant = self.data_source.require_tenant(tenant_id)
        result = GenerationResult(tenant_id=tenant_id, moment=moment.value)

        log.info(f"Generating scheduled messages | moment={moment.value} | tenant={tenant_id}")
        drafts = self.drafts.generate_all(moment, tenant_id)
        result.messages_generated = len(drafts)

        if not drafts:
            result.error_message = "No message drafts generated"
            log.warning(f"No message drafts generated | tenant={tenant_id}")
            return result

        if review_required(tenant):
            for draft in drafts:
                try:
                    self.reviews.create_review(tenant_id, draft)
                    result.messages_queued += 1
                except Exception as e:
                    log.error(
                        f"Failed to queue message for review | recipient={draft.recipient_name} | "
                        f"phone={draft.recipient_address}: {str(e)}"
                    )
                    result.failed_messages += 1
            log.info(
                f"Queued {result.messages_queued} messages for review ({result.failed_messages} failed) | "
                f"tenant={tenant_id}"
            )
        else:
            log.info(f"Review disabled, {len(drafts)} messages auto-approved | tenant={tenant_id}")
            result.messages_queued = len(drafts)
            result.auto_approved = True
            result.drafts = drafts

        result.success = result.messages_queued > 0
        return result


def build_generation_service(db: Session) -> MessageGenerationService:
    """Generation service with LLM rendering when enable_llm_messages is set"""
    llm = LLMService() if settings.enable_llm_messages else None
    return MessageGenerationService(db, draft_generator=DraftGenerator(db, llm_service=llm))
