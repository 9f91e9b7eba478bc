"""
Flask CLI commands for quote engine management.

Commands:
- flask init-db: Create every table
- flask seed-demo: Create a demo studio with catalog, conditions and one quote
- flask quote-breakdown: Print the computed breakdown of a quote
"""

import click
from studio_quotes.database import create_all, get_session
from studio_quotes.exceptions import QuoteEngineError
from studio_quotes.models import CatalogItem, CatalogItemExpense, CommercialCondition, Studio, StudioPricingConfig
from studio_quotes.services.quote_service import QuotePayload, create_quote, get_breakdown


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        create_all()
        click.echo(click.style('✅ Tablas creadas.', fg='green'))

    @app.cli.command('seed-demo')
    @click.option('--slug', default='estudio-demo', help='Slug of the demo studio')
    @click.option('--promise-id', default=1, type=int, help='Promise the demo quote belongs to')
    def seed_demo(slug, promise_id):
        """Create a demo studio with pricing config, catalog, conditions and a quote."""
        db_session = get_session()

        if db_session.query(Studio).filter_by(slug=slug).first():
            click.echo(click.style(f'❌ Ya existe un estudio con el slug: {slug}', fg='red'))
            return

        try:
            studio = Studio(slug=slug, name='Estudio Demo', active=True)
            studio.pricing_config = StudioPricingConfig(
                utility_service_ratio=30,
                utility_product_ratio=40,
                commission_ratio=5,
                markup_ratio=0,
                margin_convention=app.config.get('DEFAULT_MARGIN_CONVENTION', 'on_price'),
            )
            db_session.add(studio)
            db_session.flush()

            coverage = CatalogItem(
                studio_id=studio.id, name='Cobertura fotográfica', cost=1000,
                profit_type='service', billing_type='HOUR',
            )
            coverage.expenses = [CatalogItemExpense(label='Traslado', amount=200)]
            album = CatalogItem(
                studio_id=studio.id, name='Álbum impreso', cost=800,
                profit_type='product', billing_type='UNIT',
            )
            album.expenses = [CatalogItemExpense(label='Insumos', amount=150)]
            editing = CatalogItem(
                studio_id=studio.id, name='Edición', cost=500,
                profit_type='service', billing_type='SERVICE',
            )
            contado = CommercialCondition(
                studio_id=studio.id, name='Contado', discount_percentage=10,
                advance_type='percentage', advance_value=100,
            )
            cuotas = CommercialCondition(
                studio_id=studio.id, name='Anticipo 50%', discount_percentage=0,
                advance_type='percentage', advance_value=50,
            )
            db_session.add_all([coverage, album, editing, contado, cuotas])
            db_session.commit()
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Error al crear el estudio: {str(e)}', fg='red'))
            return

        payload = QuotePayload.from_dict({
            'name': 'Boda completa',
            'line_items': [
                {'key': 'cobertura', 'item_id': coverage.id, 'quantity': 1},
                {'key': 'album', 'item_id': album.id, 'quantity': 1},
                {'key': 'edicion', 'item_id': editing.id, 'quantity': 1},
            ],
            'courtesy_item_ids': ['edicion'],
            'condition_id': contado.id,
            'event_duration_hours': 6,
        })
        try:
            result = create_quote(payload, db_session, studio.id, promise_id)
        except QuoteEngineError as e:
            click.echo(click.style(f'❌ Error al crear la cotización: {e.message}', fg='red'))
            return
        if not result.ok:
            click.echo(click.style(f'❌ Cotización inválida: {result.errors}', fg='red'))
            return

        click.echo(click.style('\n✅ Estudio demo creado exitosamente!', fg='green', bold=True))
        click.echo(f'   Estudio: {studio.name} (id={studio.id})')
        click.echo(f'   Cotización: {payload.name} (id={result.data["id"]})')

    @app.cli.command('quote-breakdown')
    @click.argument('studio_id', type=int)
    @click.argument('quote_id', type=int)
    def quote_breakdown(studio_id, quote_id):
        """Print the computed breakdown of a quote."""
        try:
            breakdown = get_breakdown(get_session(), studio_id, quote_id).as_dict()
        except QuoteEngineError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            return

        condition = breakdown.pop('condition')
        health = breakdown['health']
        colour = {'green': 'green', 'amber': 'yellow', 'red': 'red'}.get(health, 'white')
        for key, value in breakdown.items():
            click.echo(f'   {key:<28} {value}')
        if condition:
            click.echo(f'   {"condition":<28} {condition["name"]} ({condition["source"]})')
        click.echo(click.style(f'\n   Salud: {health}', fg=colour, bold=True))
