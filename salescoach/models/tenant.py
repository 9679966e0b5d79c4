"""
Tenant, store and seller models

A tenant is the company boundary: every other row carries a tenant_id.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint

from salescoach.models.base import Base, new_id, utcnow


class Tenant(Base):
    """A company using the coach. HITL policy columns fall back to settings when NULL."""
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    timezone = Column(String, nullable=True)

    review_required = Column(Boolean, nullable=True)
    send_on_approve = Column(Boolean, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Store(Base):
    """A sub-unit of a tenant (the optional insights scope)"""
    __tablename__ = "stores"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    name = Column(String, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_store_tenant_name'),
    )


class Seller(Base):
    """An individual receiving coaching messages"""
    __tablename__ = "sellers"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    store_id = Column(String(36), ForeignKey("stores.id"), index=True, nullable=True)

    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    phone_e164 = Column(String, index=True, nullable=True)
    email = Column(String, nullable=True)
    status = Column(String, default="active", index=True, nullable=False)  # active, inactive

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_seller_tenant_code'),
    )
