"""Flask application factory."""
from flask import Flask, jsonify
from studio_quotes.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    sentry_dsn = app.config.get('SENTRY_DSN') or os.getenv('SENTRY_DSN')
    if sentry_dsn and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize database
    init_db(app)

    # One mutating call per quote at a time (Redis when configured)
    from studio_quotes.services.mutation_guard import init_mutation_guard
    init_mutation_guard(app)

    # Prometheus instrumentation; hooks into the guard's reject callback
    from studio_quotes.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,
            x_proto=1,
            x_host=1,
            x_port=1,
            x_prefix=0
        )

    # Error Handlers
    from studio_quotes.exceptions import QuoteEngineError
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(QuoteEngineError)
    def handle_quote_engine_error(error):
        """Handle domain errors as JSON with their kind."""
        level = app.logger.error if error.status_code >= 500 else app.logger.warning
        level(f"QuoteEngineError [{error.status_code}] {error.kind.value if error.kind else ''}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from studio_quotes.blueprints.quotes import quotes_bp
    from studio_quotes.blueprints.catalog import catalog_bp
    from studio_quotes.blueprints.metrics import metrics_bp

    app.register_blueprint(quotes_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from studio_quotes.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(
        f"Guard backend={app.config.get('MUTATION_GUARD_BACKEND')}, "
        f"margin convention={app.config.get('DEFAULT_MARGIN_CONVENTION')}"
    )

    return app
