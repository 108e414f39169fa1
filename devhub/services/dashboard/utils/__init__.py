"""
DevHub Dashboard shared utilities.

Import from pages:
    from utils.dashboard_utils import safe_get, hub_call, filter_users
    from utils.ui_narrative import render_page_header, render_filter_summary
"""
from .dashboard_utils import (
    DARK_LAYOUT,
    STATUS_ICON,
    safe_get,
    hub_call,
    filter_users,
    registrations_per_day,
    days_remaining,
    expiry_label,
)
from .ui_narrative import render_page_header, render_filter_summary

__all__ = [
    "DARK_LAYOUT",
    "STATUS_ICON",
    "safe_get",
    "hub_call",
    "filter_users",
    "registrations_per_day",
    "days_remaining",
    "expiry_label",
    "render_page_header",
    "render_filter_summary",
]
