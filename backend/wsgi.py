# backend/wsgi.py
from stationledger import create_app

app = create_app()
