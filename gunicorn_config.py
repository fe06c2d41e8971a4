# Gunicorn configuration for production
import multiprocessing
import os
import sys

# Add current directory to Python path to ensure app can be imported
current_dir = os.path.dirname(os.path.abspath(__file__))
if current_dir not in sys.path:
    sys.path.insert(0, current_dir)

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"
backlog = 2048

# Dashboard state lives in worker memory, so every user must stay on one worker
workers = int(os.environ.get('WEB_CONCURRENCY', '1'))
threads = min(8, multiprocessing.cpu_count() * 2)
worker_class = 'gthread'
timeout = 120  # large CSV uploads and AI highlighting calls
keepalive = 5

limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190

wsgi_app = 'app:app'

# Logging
accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = 'datalens'

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None
