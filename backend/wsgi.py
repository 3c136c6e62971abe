# backend/wsgi.py
from tilestock import create_app

app = create_app()
