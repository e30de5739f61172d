# backend/wsgi.py
from sawmill import create_app

app = create_app()
