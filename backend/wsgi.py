# backend/wsgi.py
from mdcars import create_app

app = create_app()
