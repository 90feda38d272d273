"""
Earnings summary for the authenticated user.
GET /payouts/summary
"""
from shared.auth import get_user_sub
from shared.errors import QualifyFirstError
from shared.logging import log_event
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error


def handler(event, context):
    log_event(event)
    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        services = get_services()
        summary = services.payouts.get_payout_summary(user_id)
        summary['microtasks'] = services.microtasks.get_user_microtask_earnings(user_id)
        return format_response(200, summary)
    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error getting payout summary', e)
