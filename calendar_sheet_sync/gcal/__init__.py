"""Google 日历模块"""

from .client import GoogleCalendar

__all__ = ["GoogleCalendar"]
