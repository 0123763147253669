"""
Server configuration.

Every value can be overridden through an environment variable so the same
code runs locally, behind PythonAnywhere-style WSGI hosting, and in tests.
"""
import os

HERE = os.path.dirname(os.path.abspath(__file__))

HOST = os.environ.get('PROF_HOST', '0.0.0.0')
PORT = int(os.environ.get('PORT', 3000))
DEBUG = os.environ.get('PROF_DEBUG', '') == '1'

DATA_DIR = os.environ.get('PROF_DATA_DIR', os.path.join(HERE, 'data'))
STATIC_DIR = os.environ.get('PROF_STATIC_DIR', os.path.join(HERE, '..', 'client'))
LOG_FILE = os.environ.get('PROF_LOG_FILE', 'server.log')

# TLS - run make_cert.py first, then set PROF_USE_HTTPS=1
USE_HTTPS = os.environ.get('PROF_USE_HTTPS', '') == '1'
CERT_DIR = os.path.join(HERE, 'certs')
CERT_FILE = os.environ.get('PROF_CERT_FILE', os.path.join(CERT_DIR, 'cert.pem'))
KEY_FILE = os.environ.get('PROF_KEY_FILE', os.path.join(CERT_DIR, 'privkey.pem'))

MAX_UPLOAD_BYTES = int(os.environ.get('PROF_MAX_UPLOAD_MB', 5)) * 1024 * 1024
ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif'}

SLOTS_PER_DAY = 24
