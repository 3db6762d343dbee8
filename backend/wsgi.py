# backend/wsgi.py
from factory_orders import create_app

app = create_app()
