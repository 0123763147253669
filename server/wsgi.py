#!/usr/bin/env python3
"""
WSGI entry point for hosted deployment.

Socket.IO falls back to long-polling when served through a plain WSGI host.
"""
import sys
import os

# Add the project directory to the sys.path
project_home = os.path.dirname(os.path.abspath(__file__))
if project_home not in sys.path:
    sys.path = [project_home] + sys.path

# Import the Flask application
from flask_server import app as application
