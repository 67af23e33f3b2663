import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from apps.core.users.models import AuditLog

logger = logging.getLogger(__name__)

MAX_ACTION_LENGTH = 100
MAX_TARGET_ID_LENGTH = 64


def _json_safe(details):
    if details is None:
        return {}
    if not isinstance(details, dict):
        details = {'note': details}
    return json.loads(json.dumps(details, cls=DjangoJSONEncoder))


def log_audit_event(context, action, target=None, details=None):
    target_model = ''
    target_id = ''
    if target is not None:
        target_model = target.__class__.__name__
        target_id = str(getattr(target, 'pk', ''))[:MAX_TARGET_ID_LENGTH]

    actor = context.actor if getattr(context.actor, 'is_authenticated', False) else None

    try:
        return AuditLog.objects.create(
            school=context.school,
            user=actor,
            action=action[:MAX_ACTION_LENGTH],
            target_model=target_model,
            target_id=target_id,
            details=_json_safe(details),
            method=context.method[:10],
            path=context.path[:255],
            ip_address=context.ip_address,
        )
    except Exception:
        # The audited change is already committed; keep it and report the sink failure.
        logger.exception('Audit write failed action=%s target=%s:%s %s', action, target_model, target_id, context.describe())
        return None
