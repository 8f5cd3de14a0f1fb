"""
Configuration for the recurring events engine.
"""

from recurring_events.src.config.settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
