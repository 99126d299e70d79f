import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.forms.models import model_to_dict

from apps.core.users.models import AuditLog

logger = logging.getLogger(__name__)


def _extract_ip(request):
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR') or None


def snapshot(instance):
    """JSON snapshot of a model row for the audit old/new value columns."""
    if instance is None:
        return ''
    if isinstance(instance, dict):
        return json.dumps(instance, cls=DjangoJSONEncoder, sort_keys=True)
    return json.dumps(model_to_dict(instance), cls=DjangoJSONEncoder, sort_keys=True)


def log_audit_event(request, action, target=None, description='', old_value=None, new_value=None,
                    entity_type='', entity_id='', user=None):
    try:
        if target is not None:
            entity_type = entity_type or target.__class__.__name__
            entity_id = entity_id or str(getattr(target, 'pk', '') or '')

        user = user or getattr(request, 'user', None)
        if user is not None and not user.is_authenticated:
            user = None

        # Savepoint, so a failed insert leaves the caller's transaction usable.
        with transaction.atomic():
            AuditLog.objects.create(
                user=user,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                description=description,
                old_value=snapshot(old_value),
                new_value=snapshot(new_value),
                method=request.method or '',
                path=(request.path or '')[:255],
                ip_address=_extract_ip(request),
            )
    except Exception:
        # Audit failures must never break business actions.
        logger.exception('Failed to write audit log for action %s', action)
