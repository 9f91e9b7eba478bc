"""Studio-wide pricing configuration."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from studio_quotes.database import Base, BigIntPK
from studio_quotes.engine.types import MarginConvention, PricingConfig


class StudioPricingConfig(Base):
    """
    Margin targets, commission and markup of a studio.

    Ratios are stored as entered: either a percentage (30) or a ratio (0.30).
    The engine normalizes them.
    """

    __tablename__ = 'studio_pricing_config'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    studio_id = Column(BigInteger, ForeignKey('studio.id'), nullable=False, unique=True)
    utility_service_ratio = Column(Numeric(9, 4), nullable=False, default=0)
    utility_product_ratio = Column(Numeric(9, 4), nullable=False, default=0)
    commission_ratio = Column(Numeric(9, 4), nullable=False, default=0)
    markup_ratio = Column(Numeric(9, 4), nullable=False, default=0)
    margin_convention = Column(String(20), nullable=False, default=MarginConvention.ON_PRICE.value)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    studio = relationship('Studio', back_populates='pricing_config')

    def __repr__(self):
        return (f"<StudioPricingConfig(studio_id={self.studio_id}, service={self.utility_service_ratio}, "
                f"product={self.utility_product_ratio}, commission={self.commission_ratio})>")

    def to_engine(self) -> PricingConfig:
        return PricingConfig(
            utility_service_ratio=self.utility_service_ratio,
            utility_product_ratio=self.utility_product_ratio,
            commission_ratio=self.commission_ratio,
            markup_ratio=self.markup_ratio,
            margin_convention=MarginConvention(self.margin_convention),
        )
