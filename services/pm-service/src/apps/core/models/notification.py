"""
Notification Record Model

Rows only; delivery is handled outside this service.
"""

from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, OrganizationMixin


class RelatedEntityType(models.TextChoices):
    WORK_ORDER = 'WORK_ORDER', 'Work Order'
    PM_SCHEDULE = 'PM_SCHEDULE', 'PM Schedule'
    ASSET = 'ASSET', 'Asset'
    MAINTENANCE_HISTORY = 'MAINTENANCE_HISTORY', 'Maintenance History'


class Notification(UUIDPrimaryKeyMixin, OrganizationMixin):

    class Type(models.TextChoices):
        WORK_ORDER_ESCALATED = 'WORK_ORDER_ESCALATED', 'Work Order Escalated'
        PM_DUE = 'PM_DUE', 'PM Due'
        WORK_ORDER_OVERDUE = 'WORK_ORDER_OVERDUE', 'Work Order Overdue'

    class Priority(models.TextChoices):
        LOW = 'LOW', 'Low'
        MEDIUM = 'MEDIUM', 'Medium'
        HIGH = 'HIGH', 'High'
        URGENT = 'URGENT', 'Urgent'

    user_id = models.UUIDField(db_index=True)
    type = models.CharField(max_length=30, choices=Type.choices)
    priority = models.CharField(
        max_length=10,
        choices=Priority.choices,
        default=Priority.MEDIUM
    )
    title = models.CharField(max_length=255)
    message = models.TextField()
    related_entity_type = models.CharField(
        max_length=30,
        choices=RelatedEntityType.choices,
        blank=True,
        null=True
    )
    related_entity_id = models.UUIDField(blank=True, null=True)
    action_url = models.CharField(max_length=500, blank=True, default='')
    action_label = models.CharField(max_length=100, blank=True, default='')
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user_id', 'is_read']),
            models.Index(fields=['related_entity_type', 'related_entity_id']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user_id', 'type', 'related_entity_type', 'related_entity_id'],
                name='unique_notification_per_user_entity'
            ),
        ]

    def __str__(self):
        return f"{self.type} -> {self.user_id}"
