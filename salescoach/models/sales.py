"""
Raw sales and goal records (source data for insights training)
"""
from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Index

from salescoach.models.base import Base, new_id, utcnow


class Sale(Base):
    """A single sales transaction"""
    __tablename__ = "sales"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    store_id = Column(String(36), ForeignKey("stores.id"), nullable=True)
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=False)

    sale_date = Column(Date, nullable=False)
    total_value = Column(Numeric(14, 2), nullable=False)
    items_qty = Column(Integer, default=1, nullable=False)
    category = Column(String, nullable=True)

    imported_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_sales_tenant_date', 'tenant_id', 'sale_date'),
        Index('ix_sales_seller_date', 'seller_id', 'sale_date'),
        Index('ix_sales_store_date', 'store_id', 'sale_date'),
    )


class Goal(Base):
    """Monthly sales target for a seller, a store or the whole tenant"""
    __tablename__ = "goals"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    store_id = Column(String(36), ForeignKey("stores.id"), nullable=True)
    seller_id = Column(String(36), ForeignKey("sellers.id"), index=True, nullable=True)

    month = Column(Date, index=True, nullable=False)  # first day of the month
    target_value = Column(Numeric(14, 2), nullable=False)
    target_ticket = Column(Numeric(14, 2), nullable=True)

    imported_at = Column(DateTime, default=utcnow, nullable=False)
