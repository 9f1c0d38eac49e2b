"""
cadet_portal/rate_limit.py
Shared slowapi limiter

Routes decorate their handlers with this instance and main.py attaches it
to app.state so slowapi can find it.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from cadet_portal.config.settings import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
