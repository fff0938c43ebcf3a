import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.utils import timezone

from clinic.models import Notification
from clinic.services.scope import Scope

User = get_user_model()
logger = logging.getLogger(__name__)

STATUS_ALIASES = {
    'unread': Notification.UNREAD,
    'read': Notification.READ,
    'archived': Notification.ARCHIVED,
}
DEFAULT_LIMIT = 20
MAX_LIMIT = 50


def normalize_status(raw) -> str:
    return STATUS_ALIASES.get(str(raw or '').strip().lower(), Notification.UNREAD)


def clamp_limit(raw) -> int:
    try:
        limit = int(float(raw)) if raw not in (None, '') else DEFAULT_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, limit or DEFAULT_LIMIT))


def _own(user, scope: Scope):
    return Notification.objects.filter(
        organization_id=scope.organization_id,
        branch_id=scope.branch_id,
        recipient=user,
    )


def list_notifications(user, scope: Scope, *, status=None, limit=None) -> list[dict]:
    qs = _own(user, scope).filter(status=normalize_status(status)).order_by('-created_at', '-id')
    return [
        {
            'id': n.id,
            'title': n.title,
            'body': n.body,
            'severity': n.severity,
            'priority': n.priority,
            'status': n.status,
            'route': n.route,
            'actionLabel': n.action_label,
            'createdAt': n.created_at,
        }
        for n in qs[:clamp_limit(limit)]
    ]


def mark_read(user, scope: Scope, notification_id: int) -> bool:
    changed = _own(user, scope).filter(id=notification_id, status=Notification.UNREAD).update(
        status=Notification.READ, read_at=timezone.now()
    )
    return changed > 0


def unread_count(user, scope: Scope) -> int:
    return _own(user, scope).filter(status=Notification.UNREAD).count()


def notify_roles(scope: Scope, role_codes, *, title: str, body: str = '', severity: str = Notification.INFO,
                 priority: int = 0, route: Optional[str] = None, action_label: Optional[str] = None) -> int:
    """Fan a notification out to every active branch user holding one of ``role_codes``."""
    recipients = (
        User.objects.filter(
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
            is_active=True,
            roles__code__in=list(role_codes),
        )
        .distinct()
    )
    rows = [
        Notification(
            organization_id=scope.organization_id,
            branch_id=scope.branch_id,
            recipient=u,
            title=title[:255],
            body=body,
            severity=severity,
            priority=priority,
            route=route,
            action_label=action_label,
        )
        for u in recipients
    ]
    Notification.objects.bulk_create(rows)
    logger.info('notified %s user(s) branch=%s title=%r', len(rows), scope.branch_id, title)
    return len(rows)
