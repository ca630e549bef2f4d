"""
PM Task Template Model

Reusable checklist item definitions linked into PM schedules.
"""

from typing import Dict, Any

from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin, OrganizationMixin


class PMTask(UUIDPrimaryKeyMixin, TimestampMixin, OrganizationMixin):
    """
    Checklist item template.

    Edited freely by planners; generated work orders copy the fields listed
    in SNAPSHOT_FIELDS at generation time and never read the template again.
    """

    SNAPSHOT_FIELDS = (
        'title',
        'description',
        'procedure',
        'safety_requirements',
        'tools_required',
        'parts_required',
        'estimated_minutes',
    )

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    procedure = models.TextField(blank=True, default='')
    safety_requirements = models.TextField(blank=True, default='')
    tools_required = models.TextField(blank=True, default='')
    parts_required = models.TextField(blank=True, default='')
    estimated_minutes = models.PositiveIntegerField(blank=True, null=True)

    class Meta:
        db_table = 'pm_tasks'
        ordering = ['title']
        verbose_name = 'PM Task'
        verbose_name_plural = 'PM Tasks'

    def __str__(self):
        return self.title

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the template fields carried onto a work order task."""
        return {field: getattr(self, field) for field in self.SNAPSHOT_FIELDS}
