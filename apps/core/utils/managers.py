from django.db import models


class SchoolQuerySet(models.QuerySet):
    def for_tenant(self, context):
        return self.filter(school_id=context.school_id)


class SchoolManager(models.Manager.from_queryset(SchoolQuerySet)):
    pass
