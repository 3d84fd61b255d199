"""
Analytics routes: public tracking endpoints and the admin dashboard.
"""

from .dashboard import create_dashboard_router
from .tracking import create_tracking_router

__all__ = ["create_dashboard_router", "create_tracking_router"]
