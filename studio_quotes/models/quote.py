"""Quote model for cotizaciones issued to a promise (prospect)."""
from sqlalchemy import (
    Column, BigInteger, String, Boolean, Numeric, DateTime, Text, ForeignKey, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from studio_quotes.database import Base, BigIntPK
from studio_quotes.engine.types import QuoteStatus


class Quote(Base):
    """
    Quote (Cotización).

    Holds the negotiation inputs only; every computed amount is re-derived by
    the engine from the lines, the catalog and the pricing config.
    """

    __tablename__ = 'quote'
    __table_args__ = (
        UniqueConstraint('promise_id', 'name', name='uq_quote_promise_name'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    studio_id = Column(BigInteger, ForeignKey('studio.id'), nullable=False)
    promise_id = Column(BigInteger, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=QuoteStatus.DRAFT.value)
    special_bonus = Column(Numeric(14, 2), nullable=False, default=0)
    closing_price_override = Column(Numeric(14, 2), nullable=True)
    selected_condition_id = Column(BigInteger, ForeignKey('commercial_condition.id'), nullable=True)
    visible_condition_ids = Column(JSON, nullable=True)  # None -> public conditions
    readded_condition_ids = Column(JSON, nullable=True)  # shown by hand despite the discount rule
    event_duration_hours = Column(Numeric(6, 2), nullable=True)
    visible_to_client = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    studio = relationship('Studio')
    selected_condition = relationship('CommercialCondition', foreign_keys=[selected_condition_id])
    lines = relationship(
        'QuoteLine',
        back_populates='quote',
        cascade='all, delete-orphan',
        order_by='QuoteLine.position',
    )
    negotiated_condition = relationship(
        'NegotiatedCondition',
        uselist=False,
        back_populates='quote',
        cascade='all, delete-orphan',
    )

    def __repr__(self):
        return f"<Quote(id={self.id}, name='{self.name}', promise_id={self.promise_id}, status='{self.status}')>"

    @property
    def is_authorized(self):
        return self.status == QuoteStatus.AUTORIZADA.value

    @property
    def courtesy_keys(self):
        return {line.line_key for line in self.lines if line.is_courtesy}
