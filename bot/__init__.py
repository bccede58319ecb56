"""Bot package initialization"""
from .filters import IsAdmin
from .handlers import format_time_ago, router

__all__ = ['IsAdmin', 'format_time_ago', 'router']
