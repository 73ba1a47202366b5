"""
API routers
"""

from . import flows, executions, events, monitoring

__all__ = ["flows", "executions", "events", "monitoring"]
