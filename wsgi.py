# wsgi.py: gunicorn entry point: gunicorn -c gunicorn.config.py wsgi:app
import gevent.monkey
gevent.monkey.patch_all()

import os  # noqa: E402

from app import create_app  # noqa: E402
from config import Config, ProductionConfig  # noqa: E402

app = create_app(ProductionConfig if os.getenv("FLASK_ENV") == "production" else Config)
