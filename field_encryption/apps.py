"""
Field Encryption App Configuration
"""
from django.apps import AppConfig


class FieldEncryptionAppConfig(AppConfig):
    """Configuration for the field encryption app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'field_encryption'
    verbose_name = 'Document Field Encryption'
