"""Catalog item and its expense breakdown."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from studio_quotes.database import Base, BigIntPK
from studio_quotes.engine.types import BillingType, CatalogItemSnapshot, ExpenseEntry, ProfitType


class CatalogItem(Base):
    """Service or product offered by a studio, priced from cost + expense."""

    __tablename__ = 'catalog_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    studio_id = Column(BigInteger, ForeignKey('studio.id'), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    cost = Column(Numeric(14, 2), nullable=False, default=0)
    profit_type = Column(String(20), nullable=False, default=ProfitType.SERVICE.value)
    billing_type = Column(String(20), nullable=False, default=BillingType.SERVICE.value)
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    studio = relationship('Studio', back_populates='catalog_items')
    expenses = relationship(
        'CatalogItemExpense',
        back_populates='item',
        cascade='all, delete-orphan',
        order_by='CatalogItemExpense.id',
    )

    def __repr__(self):
        return f"<CatalogItem(id={self.id}, name='{self.name}', cost={self.cost}, billing='{self.billing_type}')>"

    def to_snapshot(self) -> CatalogItemSnapshot:
        return CatalogItemSnapshot(
            id=self.id,
            name=self.name,
            cost=self.cost,
            profit_type=ProfitType(self.profit_type),
            billing_type=BillingType(self.billing_type),
            expense_breakdown=tuple(ExpenseEntry(label=e.label, amount=e.amount) for e in self.expenses),
            description=self.description,
            status=self.status,
        )


class CatalogItemExpense(Base):
    """One labelled expense of a catalog item (traslado, insumos...)."""

    __tablename__ = 'catalog_item_expense'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    item_id = Column(BigInteger, ForeignKey('catalog_item.id'), nullable=False)
    label = Column(String(120), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False, default=0)

    # Relationships
    item = relationship('CatalogItem', back_populates='expenses')

    def __repr__(self):
        return f"<CatalogItemExpense(item_id={self.item_id}, label='{self.label}', amount={self.amount})>"
