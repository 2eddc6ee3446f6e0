import multiprocessing

# Gunicorn production configuration for the storefront back-office.
# Invoice numbers and stock are serialised by row locks in the database,
# so any number of workers is safe.
workers = multiprocessing.cpu_count() * 2 + 1
threads = 2
worker_class = 'gthread'

# Resilience
timeout = 60
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = 'info'
capture_output = True

wsgi_app = 'wsgi:app'
