# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

import os

# A single worker owns the scheduler thread
workers = 1
worker_class = 'gthread'
threads = 4
# Longest sync leg (complete mode, 330s) plus lock wait and slack
timeout = 400
keepalive = 2

bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'

# Don't preload - the scheduler thread must start inside the worker
preload_app = False

proc_name = 'toggl-calendar-sync'

wsgi_app = 'app:create_app()'
