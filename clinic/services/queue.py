"""
Queue token allocation and status moves.

Tokens restart at 1 for every branch each day.  Allocation must happen
while the caller holds the branch row lock (``Branch`` selected
``FOR UPDATE``) so two desks never hand out the same number.
"""
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from clinic.models import QueueEntry, Visit
from clinic.services.audit import log_action
from clinic.services.dates import today
from clinic.services.scope import Scope, get_clinician_visit

logger = logging.getLogger(__name__)


def queue_group(branch_id: int) -> str:
    return f"queue.{branch_id}"


def publish_queue_change(branch_id: int, **data) -> None:
    """Tell connected desks of the branch to refresh, once the write commits."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    event = {"type": "queue.changed", "branchId": branch_id, **data}

    def _send():
        # runs after commit, so a failed send is only logged
        try:
            async_to_sync(channel_layer.group_send)(queue_group(branch_id), event)
        except Exception:
            logger.warning('queue broadcast failed branch=%s event=%s', branch_id, event, exc_info=True)

    transaction.on_commit(_send)


def next_token(branch_id: int, day) -> int:
    tokens = (
        QueueEntry.objects.select_for_update()
        .filter(visit__branch_id=branch_id, visit__visit_date=day)
        .values_list('token_no', flat=True)
    )
    return max(tokens, default=0) + 1


def enqueue_visit(visit: Visit) -> QueueEntry:
    entry = QueueEntry.objects.create(
        visit=visit,
        token_no=next_token(visit.branch_id, visit.visit_date),
        status=QueueEntry.WAITING,
    )
    logger.info('queued visit=%s token=%s branch=%s', visit.id, entry.token_no, visit.branch_id)
    publish_queue_change(visit.branch_id, visitId=visit.id, token=entry.token_no, status=entry.status)
    return entry


@transaction.atomic
def set_reception_status(user, scope: Scope, queue_entry_id: int, new_status: str) -> QueueEntry:
    if new_status not in QueueEntry.RECEPTION_STATUSES:
        raise ValidationError('Invalid status.')
    entry = (
        QueueEntry.objects.select_for_update()
        .filter(
            id=queue_entry_id,
            visit__organization_id=scope.organization_id,
            visit__branch_id=scope.branch_id,
            visit__visit_date=today(),
        )
        .first()
    )
    if entry is None:
        raise NotFound('Queue entry not found.')
    old_status = entry.status
    entry.status = new_status
    entry.save(update_fields=['status', 'updated_at'])
    log_action(user=user, action='queue_status', object_type='queue_entry', object_id=entry.id,
               detail={'from': old_status, 'to': new_status})
    publish_queue_change(scope.branch_id, visitId=entry.visit_id, token=entry.token_no, status=new_status)
    return entry


@transaction.atomic
def mark_visit_done(user, scope: Scope, visit_id: int) -> Visit:
    """Doctor finished with the patient: queue entry DONE, visit COMPLETED."""
    visit = get_clinician_visit(user, scope, visit_id, for_update=True)
    updated = QueueEntry.objects.filter(visit=visit).update(status=QueueEntry.DONE)
    if visit.status not in Visit.CLOSED_STATUSES:
        visit.status = Visit.COMPLETED
        visit.save(update_fields=['status', 'updated_at'])
    log_action(user=user, action='visit_done', object_type='visit', object_id=visit.id,
               detail={'queueUpdated': updated})
    publish_queue_change(scope.branch_id, visitId=visit.id, status=QueueEntry.DONE)
    return visit
