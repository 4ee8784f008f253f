# backend/wsgi.py
from pos_returns import create_app

app = create_app()
