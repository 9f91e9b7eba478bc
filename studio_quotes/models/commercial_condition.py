"""Reusable commercial conditions and per-quote negotiated terms."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from studio_quotes.database import Base, BigIntPK
from studio_quotes.engine.types import AdvanceType, CommercialConditionSpec, NegotiatedTerms


class CommercialCondition(Base):
    """Named discount + advance/deferred template of a studio."""

    __tablename__ = 'commercial_condition'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    studio_id = Column(BigInteger, ForeignKey('studio.id'), nullable=False)
    name = Column(String(200), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    advance_type = Column(String(20), nullable=False, default=AdvanceType.PERCENTAGE.value)
    advance_value = Column(Numeric(14, 2), nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=True)
    kind = Column(String(20), nullable=False, default='standard')  # standard, special
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    studio = relationship('Studio', back_populates='conditions')

    def __repr__(self):
        return f"<CommercialCondition(id={self.id}, name='{self.name}', discount={self.discount_percentage})>"

    def to_spec(self) -> CommercialConditionSpec:
        return CommercialConditionSpec(
            id=self.id,
            name=self.name,
            discount_percentage=self.discount_percentage,
            advance_type=AdvanceType(self.advance_type),
            advance_value=self.advance_value,
            is_public=self.is_public,
            kind=self.kind,
        )


class NegotiatedCondition(Base):
    """
    Condición pactada.

    Ad-hoc terms owned by a single quote. Rows written when a quote enters
    closing carry ``frozen_at`` and the standard condition they came from.
    """

    __tablename__ = 'negotiated_condition'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, unique=True)
    name = Column(String(200), nullable=False, default='Condición pactada')
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    advance_type = Column(String(20), nullable=False, default=AdvanceType.PERCENTAGE.value)
    advance_value = Column(Numeric(14, 2), nullable=False, default=0)
    source_condition_id = Column(BigInteger, ForeignKey('commercial_condition.id'), nullable=True)
    frozen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    quote = relationship('Quote', back_populates='negotiated_condition')
    source_condition = relationship('CommercialCondition', foreign_keys=[source_condition_id])

    def __repr__(self):
        return f"<NegotiatedCondition(quote_id={self.quote_id}, discount={self.discount_percentage}, frozen_at={self.frozen_at})>"

    def to_terms(self) -> NegotiatedTerms:
        return NegotiatedTerms(
            name=self.name,
            discount_percentage=self.discount_percentage,
            advance_type=AdvanceType(self.advance_type),
            advance_value=self.advance_value,
            source_condition_id=self.source_condition_id,
            frozen_at=self.frozen_at,
        )

    @classmethod
    def from_terms(cls, terms: NegotiatedTerms, **kwargs) -> 'NegotiatedCondition':
        return cls(
            name=terms.name,
            discount_percentage=terms.discount_percentage,
            advance_type=AdvanceType(terms.advance_type).value,
            advance_value=terms.advance_value,
            source_condition_id=terms.source_condition_id,
            frozen_at=terms.frozen_at,
            **kwargs,
        )
