import pytest
from decimal import Decimal
import uuid

from studio_quotes import create_app
from studio_quotes.database import create_all, drop_all, get_session
from studio_quotes.models import (
    Studio, StudioPricingConfig, CatalogItem, CatalogItemExpense, CommercialCondition,
)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    app.config['TESTING'] = True
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema per test on the in-memory database."""
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()


@pytest.fixture(scope='function')
def studio(session):
    """Create test studio."""
    suffix = str(uuid.uuid4())[:8]
    studio = Studio(
        slug=f'test-studio-{suffix}',
        name=f'Test Studio {suffix}',
        active=True
    )
    session.add(studio)
    session.commit()
    return studio


@pytest.fixture(scope='function')
def pricing_config(session, studio):
    """20% margin on price for services and products, 5% commission, no markup."""
    config = StudioPricingConfig(
        studio_id=studio.id,
        utility_service_ratio=Decimal('20'),
        utility_product_ratio=Decimal('20'),
        commission_ratio=Decimal('5'),
        markup_ratio=Decimal('0'),
        margin_convention='on_price',
    )
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='function')
def catalog_items(session, studio, pricing_config):
    """
    Catalog priced so that:
    - sesion: (480 + 160) / 0.8 = 800 per service
    - album: (120 + 40) / 0.8 = 200 per unit
    - cobertura: 80 / 0.8 = 100 per hour
    """
    sesion = CatalogItem(
        studio_id=studio.id, name='Sesión', cost=Decimal('480'),
        profit_type='service', billing_type='SERVICE',
    )
    sesion.expenses = [
        CatalogItemExpense(label='Traslado', amount=Decimal('100')),
        CatalogItemExpense(label='Insumos', amount=Decimal('60')),
    ]
    album = CatalogItem(
        studio_id=studio.id, name='Álbum', cost=Decimal('120'),
        profit_type='product', billing_type='UNIT',
    )
    album.expenses = [CatalogItemExpense(label='Impresión', amount=Decimal('40'))]
    cobertura = CatalogItem(
        studio_id=studio.id, name='Cobertura', cost=Decimal('80'),
        profit_type='service', billing_type='HOUR',
    )
    session.add_all([sesion, album, cobertura])
    session.commit()
    return {'sesion': sesion, 'album': album, 'cobertura': cobertura}


@pytest.fixture(scope='function')
def conditions(session, studio):
    """Public 10% cash discount, public 50% advance and a private special condition."""
    contado = CommercialCondition(
        studio_id=studio.id, name='Contado', discount_percentage=Decimal('10'),
        advance_type='percentage', advance_value=Decimal('100'), is_public=True,
    )
    anticipo = CommercialCondition(
        studio_id=studio.id, name='Anticipo 50%', discount_percentage=Decimal('0'),
        advance_type='percentage', advance_value=Decimal('50'), is_public=True,
    )
    especial = CommercialCondition(
        studio_id=studio.id, name='Especial', discount_percentage=Decimal('15'),
        advance_type='fixed_amount', advance_value=Decimal('300'), is_public=False, kind='special',
    )
    session.add_all([contado, anticipo, especial])
    session.commit()
    return {'contado': contado, 'anticipo': anticipo, 'especial': especial}


@pytest.fixture(scope='function')
def quote_body(catalog_items, conditions):
    """JSON body of the reference quote: 1000 subtotal, 200 courtesy, 50 bonus, 10% condition."""
    return {
        'name': 'Boda completa',
        'line_items': [
            {'key': 'sesion', 'item_id': catalog_items['sesion'].id, 'quantity': 1},
            {'key': 'album', 'item_id': catalog_items['album'].id, 'quantity': 1},
        ],
        'courtesy_item_ids': ['album'],
        'special_bonus': 50,
        'condition_id': conditions['contado'].id,
    }
