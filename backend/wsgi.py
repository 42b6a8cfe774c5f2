# backend/wsgi.py
from d1store import create_app

app = create_app()
