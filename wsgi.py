"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi systems generate-slugs
    gunicorn wsgi:app
"""

from tracker import create_app

app = create_app()
