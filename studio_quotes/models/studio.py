"""Studio model - each business issuing quotes."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from studio_quotes.database import Base, BigIntPK


class Studio(Base):
    """Studio (estudio) owning a catalog, pricing config and conditions."""

    __tablename__ = 'studio'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    name = Column(String(200), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    pricing_config = relationship('StudioPricingConfig', uselist=False, back_populates='studio', cascade='all, delete-orphan')
    catalog_items = relationship('CatalogItem', back_populates='studio', cascade='all, delete-orphan')
    conditions = relationship('CommercialCondition', back_populates='studio', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Studio(id={self.id}, slug='{self.slug}', name='{self.name}')>"
