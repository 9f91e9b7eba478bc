"""Models package - exports all SQLAlchemy models."""
from studio_quotes.models.studio import Studio
from studio_quotes.models.pricing_config import StudioPricingConfig
from studio_quotes.models.catalog_item import CatalogItem, CatalogItemExpense
from studio_quotes.models.commercial_condition import CommercialCondition, NegotiatedCondition
from studio_quotes.models.quote import Quote
from studio_quotes.models.quote_line import QuoteLine

__all__ = [
    'Studio', 'StudioPricingConfig',
    'CatalogItem', 'CatalogItemExpense',
    'CommercialCondition', 'NegotiatedCondition',
    'Quote', 'QuoteLine',
]
