from django.apps import apps
from django.test.runner import DiscoverRunner

PROJECT_APP_PREFIX = 'apps.core.'


class ProjectAppsDiscoverRunner(DiscoverRunner):
    """`manage.py test` with no labels runs the fee ledger apps only."""

    def build_suite(self, test_labels=None, **kwargs):
        if not test_labels:
            test_labels = [
                app_config.name
                for app_config in apps.get_app_configs()
                if app_config.name.startswith(PROJECT_APP_PREFIX)
            ]
        return super().build_suite(test_labels=test_labels, **kwargs)
