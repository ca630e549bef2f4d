"""
PM engine policy settings.

Values come from ``settings.PM_ENGINE``; missing keys fall back to DEFAULTS.
"""

from django.conf import settings

DEFAULTS = {
    'PRIORITY_BY_CRITICALITY': {'HIGH': 'HIGH'},
    'DEFAULT_PRIORITY': 'MEDIUM',
    'ESCALATION_PRIORITY': 'HIGH',
    'REMEDIATION_WINDOW_DAYS': 3,
    'ESCALATION_ROLES': ['MANAGER'],
    'CUMULATIVE_METER_TYPES': ['HOURS', 'MILES', 'KILOMETERS', 'CYCLES', 'GALLONS'],
    'USAGE_PROJECTION_WINDOW_DAYS': 30,
    'UPCOMING_DAYS': 7,
    'OVERDUE_GRACE_DAYS': 3,
    'OVERDUE_PRIORITY': 'URGENT',
    'FAILURE_WINDOW_DAYS': 30,
    'FAILURE_ESCALATION_THRESHOLD': 3,
}


def pm_setting(name: str):
    engine = getattr(settings, 'PM_ENGINE', {})
    if name in engine:
        return engine[name]
    return DEFAULTS[name]


def priority_for_criticality(criticality: str) -> str:
    """Work order priority for an asset criticality."""
    mapping = pm_setting('PRIORITY_BY_CRITICALITY')
    return mapping.get(str(criticality).upper(), pm_setting('DEFAULT_PRIORITY'))
