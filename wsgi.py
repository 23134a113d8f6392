"""WSGI entry point for Gunicorn."""
import sys
import os

# Ensure the app directory is in the Python path
sys.path.insert(0, os.path.dirname(__file__))

from app import create_app

# PRESU_CONFIG selects the config class (default: config.Config)
app = create_app(os.getenv('PRESU_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run()
