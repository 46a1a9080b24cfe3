from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_SITE_READ = "site.read"
PERM_SITE_WRITE = "site.write"
PERM_FRAMEWORK_READ = "framework.read"
PERM_FRAMEWORK_WRITE = "framework.write"
PERM_THRESHOLD_READ = "threshold.read"
PERM_THRESHOLD_WRITE = "threshold.write"
PERM_METRICS_READ = "metrics.read"
PERM_METRICS_WRITE = "metrics.write"
PERM_ALERT_READ = "alert.read"
PERM_REPORTING_READ = "reporting.read"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_SITE_READ,
    PERM_SITE_WRITE,
    PERM_FRAMEWORK_READ,
    PERM_FRAMEWORK_WRITE,
    PERM_THRESHOLD_READ,
    PERM_THRESHOLD_WRITE,
    PERM_METRICS_READ,
    PERM_METRICS_WRITE,
    PERM_ALERT_READ,
    PERM_REPORTING_READ,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
