"""QuoteLine model for quote line items."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from studio_quotes.database import Base, BigIntPK
from studio_quotes.engine.types import BillingType, LineItem, ProfitType


class QuoteLine(Base):
    """
    Quote Line (Ítem de cotización).

    Either linked to a catalog item (``item_id``) or a custom snapshot that
    carries its own prices. A snapshot replacing a catalog item keeps the
    back-reference in ``original_item_id``; one standing in for a catalog line
    of the same quote names that line in ``replaces_line_key``.
    """

    __tablename__ = 'quote_line'
    __table_args__ = (
        UniqueConstraint('quote_id', 'line_key', name='uq_quote_line_key'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False)
    line_key = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(BigInteger, ForeignKey('catalog_item.id'), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    unit_price = Column(Numeric(14, 2), nullable=True)
    cost = Column(Numeric(14, 2), nullable=True)
    expense = Column(Numeric(14, 2), nullable=True)
    billing_type = Column(String(20), nullable=True)
    profit_type = Column(String(20), nullable=True)
    original_item_id = Column(BigInteger, ForeignKey('catalog_item.id'), nullable=True)
    replaces_line_key = Column(String(64), nullable=True)
    promote_to_catalog = Column(Boolean, nullable=False, default=False)
    is_courtesy = Column(Boolean, nullable=False, default=False)

    # Relationships
    quote = relationship('Quote', back_populates='lines')
    item = relationship('CatalogItem', foreign_keys=[item_id])
    original_item = relationship('CatalogItem', foreign_keys=[original_item_id])

    def __repr__(self):
        return f"<QuoteLine(id={self.id}, quote_id={self.quote_id}, key='{self.line_key}', item_id={self.item_id}, qty={self.quantity})>"

    @property
    def is_custom(self):
        return self.item_id is None

    def to_line_item(self) -> LineItem:
        if not self.is_custom:
            return LineItem(key=self.line_key, quantity=self.quantity, item_id=self.item_id)
        return LineItem(
            key=self.line_key,
            quantity=self.quantity,
            name=self.name,
            description=self.description,
            unit_price=self.unit_price,
            cost=self.cost,
            expense=self.expense,
            billing_type=BillingType(self.billing_type or BillingType.SERVICE.value),
            profit_type=ProfitType(self.profit_type or ProfitType.SERVICE.value),
            original_item_id=self.original_item_id,
            replaces_key=self.replaces_line_key,
            promote_to_catalog=self.promote_to_catalog,
        )

    def apply_line_item(self, line: LineItem) -> None:
        """Copy the engine line's fields onto this row."""
        self.line_key = line.key
        self.quantity = line.quantity
        self.item_id = line.item_id
        if line.is_custom:
            self.name = line.name
            self.description = line.description
            self.unit_price = line.unit_price
            self.cost = line.cost
            self.expense = line.expense
            self.billing_type = BillingType(line.billing_type).value
            self.profit_type = ProfitType(line.profit_type).value
        else:
            self.name = self.description = None
            self.unit_price = self.cost = self.expense = None
            self.billing_type = self.profit_type = None
        self.original_item_id = line.original_item_id
        self.replaces_line_key = line.replaces_key if line.is_custom else None
        self.promote_to_catalog = bool(line.promote_to_catalog)
