"""
Control surface configuration.
"""
from amzsync.config import config, VERSION

# Web server settings
WEB_HOST = config.web.host
WEB_PORT = config.web.port

# Rate limits (slowapi syntax)
START_RATE_LIMIT = config.web.start_rate_limit
STATUS_RATE_LIMIT = config.web.status_rate_limit

__all__ = ["WEB_HOST", "WEB_PORT", "START_RATE_LIMIT", "STATUS_RATE_LIMIT", "VERSION"]
