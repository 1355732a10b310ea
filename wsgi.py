# ── blindmark — WSGI entry point for Gunicorn ──
"""Production entry-point used by Gunicorn / Docker."""

from blindmark import create_app

app = create_app("config.ProductionConfig")
