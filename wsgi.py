"""WSGI entry point for Gunicorn."""
import os

from studio_quotes import create_app

# Create the application instance
app = create_app(os.getenv('FLASK_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run()
