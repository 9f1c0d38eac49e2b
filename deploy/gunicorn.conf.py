"""
deploy/gunicorn.conf.py
Gunicorn settings for the cadet portal API

Run with: gunicorn -c deploy/gunicorn.conf.py cadet_portal.main:app
"""
import os
import multiprocessing

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes. Each worker owns its own TTL cache, so keep the count
# modest when cache freshness across workers matters.
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 60
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

# Process naming
proc_name = "cadet-portal"

# Server mechanics
daemon = False
pidfile = "/tmp/cadet-portal.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190
