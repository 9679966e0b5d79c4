"""
Shared FastAPI dependencies
"""
from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from salescoach.connectors.whatsapp import BaseMessagingProvider, get_messaging_provider
from salescoach.models.base import get_db
from salescoach.models.tenant import Tenant
from salescoach.utils.errors import ConfigurationError


def get_provider() -> BaseMessagingProvider:
    """Configured messaging provider; 400 when credentials are missing"""
    try:
        return get_messaging_provider()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_optional_provider() -> Optional[BaseMessagingProvider]:
    try:
        return get_messaging_provider()
    except ConfigurationError:
        return None


def get_tenant(tenant_id: str, db: Session = Depends(get_db)) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")
    return tenant
