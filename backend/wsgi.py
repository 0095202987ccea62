# backend/wsgi.py
from storefront import create_app

app = create_app()

# Worker: celery -A wsgi:celery_app worker --beat
celery_app = app.extensions["celery"]
