"""
pytest hooks for the field_encryption suite.

Settings and import paths come from ``[tool.pytest.ini_options]``.
"""
import django
import pytest


def pytest_configure():
    # Test modules declare models, so the app registry must be ready first.
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    # The app has no models module, so migrate's syncdb skips it; create the
    # tables for the models declared by the test modules explicitly.
    from django.apps import apps
    from django.db import connection

    with django_db_blocker.unblock():
        with connection.schema_editor() as editor:
            for model in apps.get_app_config('field_encryption').get_models():
                editor.create_model(model)
