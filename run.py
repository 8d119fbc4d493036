"""
Local development server for the Folio API.

Reads the port from PORT (default 5000). Use wsgi.py behind gunicorn in
production.
"""

import os
from folio import create_app

app = create_app()

if __name__ == "__main__":
    app.run(port=int(os.getenv("PORT", "5000")), debug=app.config.get("DEBUG", False))
