# backend/wsgi.py
from fuelops import create_app

app = create_app()
