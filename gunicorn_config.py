import multiprocessing
import os

# Gunicorn configuration for the requisition portal
#   gunicorn -c gunicorn_config.py wsgi:app
#
# Each worker process keeps its own per-requisition locks; across workers
# the database row lock (SELECT … FOR UPDATE) serialises transitions.
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1))
threads = int(os.environ.get('GUNICORN_THREADS', '4'))
worker_class = 'gthread'

# Attachment uploads are capped by MAX_CONTENT_LENGTH; slow clients get this long
timeout = int(os.environ.get('GUNICORN_TIMEOUT', '60'))
graceful_timeout = 30
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(L)ss'
capture_output = True


def post_fork(server, worker):
    server.log.info(f"Requisition portal worker {worker.pid} started")
