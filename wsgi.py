"""
Production entry point: `gunicorn wsgi:app`.

Set APP_CONFIG to pick the config class; ProdConfig refuses to start
without a strong SECRET_KEY and a webhook signing secret.
"""

from folio import create_app

app = create_app()
