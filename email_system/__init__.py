# email_system/__init__.py
"""
Email system for member notifications.
"""
from email_system.services.email_service import EmailService

__all__ = ['EmailService']
