"""
Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi db migrate -m "description"
    flask --app wsgi seed-reference-data
"""

from occurrence_tracker import create_app

app = create_app()
