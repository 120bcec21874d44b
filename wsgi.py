"""
Flask CLI / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi workflow process-auto-transitions
    flask --app wsgi workflow validate-config --scope 3
"""

from workintake import create_app

app = create_app()
