import logging
from functools import wraps

from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _roles(allowed_roles):
    if isinstance(allowed_roles, str):
        return frozenset({allowed_roles})
    return frozenset(allowed_roles)


def _denied(message, status, **extra):
    return JsonResponse({'success': False, 'error': message, **extra}, status=status)


def role_required(allowed_roles):
    """Restrict a JSON view to users holding one of ``allowed_roles``."""
    roles = _roles(allowed_roles)

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            user = request.user
            if not user.is_authenticated:
                return _denied('Authentication required.', 401)

            if user.role not in roles:
                logger.warning(
                    'Denied %s %s to %s (role %s)',
                    request.method, request.path, user.username, user.role,
                )
                return _denied('You do not have access to this action.', 403, allowedRoles=sorted(roles))

            return view_func(request, *args, **kwargs)

        wrapper.allowed_roles = roles
        return wrapper

    return decorator
