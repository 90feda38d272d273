"""
Manual payout trigger (admin only).
POST /admin/payouts
Body: { "user_id": "...", "amount": "2.50", "type": "manual_payout", "source_id": "..." }
"""
from shared.auth import get_user_sub, is_admin
from shared.errors import QualifyFirstError, ValidationError
from shared.logging import log_event, logger
from shared.models import TransactionType
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error, parse_body


def handler(event, context):
    log_event(event)
    admin_id = get_user_sub(event)
    if not admin_id:
        return format_response(401, {'error': 'Unauthorized'})
    if not is_admin(event):
        return format_response(403, {'error': 'Admin access required'})

    try:
        body = parse_body(event)
        user_id = body.get('user_id')
        amount = body.get('amount')
        transaction_type = body.get('type') or TransactionType.MANUAL_PAYOUT
        source_id = body.get('source_id')

        if not user_id or amount in (None, ''):
            raise ValidationError('Missing required fields: user_id and amount')

        payouts = get_services().payouts
        if transaction_type == TransactionType.REFERRAL_BONUS:
            result = payouts.process_referral_payout(user_id, source_id, amount)
        else:
            result = payouts.process_payout(user_id, amount, transaction_type, source_id)

        logger.info(f"Admin {admin_id} payout for {user_id}: {result.status}")
        return format_response(200, result.to_dict())

    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error processing payout', e)
