"""
Payout router.

Decides whether an earning is disbursed now or held pending, picks the
rail from the user's payout preference and records the transaction.

Flow:
1. total = pending earnings + new amount
2. total < minimum payout  → store as pending, report deferred
3. otherwise claim pending rows, credit the balance service for the full
   total, record a completed transaction, bump yearly earnings, settle rows

Direct wallet disbursement does not exist yet. Wallet preference and
split-preference totals at or above the split threshold are reported as
failures and the earnings stay pending.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from shared.balance_service import payout_reason
from shared.config import config
from shared.dynamo import MAX_TRANSACT_ITEMS
from shared.errors import ConfigError, ConflictError, NotFoundError, PersistenceError, UpstreamError, ValidationError
from shared.logging import logger
from shared.models import (
    PayoutMethod,
    PayoutPreference,
    TransactionStatus,
    TransactionType,
    UserProfile,
    to_money,
)
from shared.profiles import load_profile

WALLET_NOT_SUPPORTED = 'Direct wallet payouts are not supported yet'
DISCORD_NOT_LINKED = 'Discord account not linked'


class PayoutStatus:
    PAID = 'paid'
    DEFERRED = 'deferred'
    FAILED = 'failed'


@dataclass
class PayoutResult:
    success: bool
    status: str
    amount: Decimal = Decimal('0.00')
    method: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    # Failed, but the amount was added to the pending ledger
    held: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'status': self.status,
            'amount': self.amount,
            'method': self.method,
            'transactionId': self.transaction_id,
            'error': self.error,
            'held': self.held,
        }


@dataclass
class _Route:
    method: Optional[str]
    error: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def earning_category(transaction_type: str) -> str:
    """Yearly earnings bucket: referral bonuses apart, everything else is survey income."""
    return 'referral' if transaction_type == TransactionType.REFERRAL_BONUS else 'survey'


class PayoutRouter:
    """Routes earnings to the balance service or the pending ledger."""

    def __init__(
        self,
        store,
        ledger,
        balance_client,
        transactions_table: str = None,
        earnings_table: str = None,
        split_threshold: Decimal = None
    ):
        self.store = store
        self.ledger = ledger
        self.balance_client = balance_client
        self.transactions_table = transactions_table or config.PAYOUT_TRANSACTIONS_TABLE
        self.earnings_table = earnings_table or config.USER_EARNINGS_TABLE
        self.split_threshold = split_threshold if split_threshold is not None else config.SPLIT_PAYOUT_THRESHOLD

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def process_payout(
        self,
        user_id: str,
        earned_amount: Any,
        transaction_type: str = TransactionType.SURVEY_COMPLETION,
        source_id: Optional[str] = None
    ) -> PayoutResult:
        """
        Pay out pending + new earnings if they reach the user's minimum,
        otherwise hold the new amount as pending.

        Raises:
            ValidationError: non-positive amount or unknown transaction type
        """
        amount = to_money(earned_amount)
        if amount <= 0:
            raise ValidationError('Payout amount must be positive')
        if transaction_type not in TransactionType.ALL:
            raise ValidationError(f'Unknown transaction type: {transaction_type}')

        try:
            profile = load_profile(self.store, user_id)
            pending_rows = self.ledger.list_pending(user_id)[:MAX_TRANSACT_ITEMS]
        except (NotFoundError, PersistenceError) as e:
            logger.error(f"Payout for {user_id} aborted: {e}")
            return PayoutResult(False, PayoutStatus.FAILED, amount, error=e.message)

        total = sum((to_money(r.get('amount', 0)) for r in pending_rows), Decimal('0.00')) + amount

        if total < profile.minimum_payout:
            return self._defer(user_id, amount, transaction_type, source_id)

        route = self._choose_route(profile, total)
        if route.error:
            logger.warning(f"Payout of {total} for {user_id} not disbursed: {route.error}")
            transaction_id = self._record_rejected(user_id, total, transaction_type, route, source_id)
            result = self._fail_and_keep(user_id, amount, transaction_type, source_id, route.error, route.method)
            result.transaction_id = transaction_id
            return result

        try:
            self.ledger.claim(pending_rows)
        except ConflictError:
            # Another payout for this user is settling those rows right now
            logger.info(f"Pending earnings for {user_id} claimed concurrently, deferring {amount}")
            return self._defer(user_id, amount, transaction_type, source_id)
        except PersistenceError as e:
            return self._fail_and_keep(user_id, amount, transaction_type, source_id, e.message, route.method)

        return self._disburse(profile, pending_rows, amount, total, transaction_type, source_id, route.method)

    def process_referral_payout(self, user_id: str, referral_id: str, amount: Any) -> PayoutResult:
        """Referral bonuses skip the minimum and go straight to the balance service."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError('Referral bonus must be positive')

        try:
            profile = load_profile(self.store, user_id)
        except (NotFoundError, PersistenceError) as e:
            return PayoutResult(False, PayoutStatus.FAILED, amount, error=e.message)

        if not profile.discord_id:
            return self._defer(user_id, amount, TransactionType.REFERRAL_BONUS, referral_id)

        return self._disburse(
            profile, [], amount, amount, TransactionType.REFERRAL_BONUS, referral_id, PayoutMethod.BALANCE_SERVICE
        )

    def get_payout_summary(self, user_id: str) -> Dict[str, Any]:
        """Yearly paid earnings, pending amount, JustTheTip balance and recent transactions."""
        year = datetime.now(timezone.utc).year
        earnings = self.store.get_item(self.earnings_table, {'userId': user_id, 'year': year}) or {}
        pending = self.ledger.get_pending_earnings(user_id)
        paid = to_money(earnings.get('totalEarnings', 0))

        transactions = self.store.query(
            self.transactions_table,
            'userId',
            user_id,
            index_name='byUser',
            limit=10,
            scan_forward=False
        )

        balance = Decimal('0')
        try:
            profile = load_profile(self.store, user_id)
            if profile.discord_id:
                balance = self.balance_client.get_user_balance(profile.discord_id)
        except NotFoundError:
            pass

        return {
            'year': year,
            'totalEarnings': paid + pending,
            'paidAmount': paid,
            'pendingAmount': pending,
            'surveyEarnings': to_money(earnings.get('surveyEarnings', 0)),
            'referralEarnings': to_money(earnings.get('referralEarnings', 0)),
            'justTheTipBalance': balance,
            'recentTransactions': transactions,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _choose_route(self, profile: UserProfile, total: Decimal) -> _Route:
        preference = PayoutPreference.normalize(profile.payout_preference)

        if preference == PayoutPreference.WALLET:
            return _Route(PayoutMethod.WALLET, WALLET_NOT_SUPPORTED)

        if preference == PayoutPreference.SPLIT:
            if total >= self.split_threshold:
                return _Route(PayoutMethod.WALLET, WALLET_NOT_SUPPORTED)
            method = PayoutMethod.BALANCE_SERVICE
        elif preference == PayoutPreference.BALANCE_SERVICE:
            method = PayoutMethod.BALANCE_SERVICE
        else:
            return _Route(None, f'Unknown payout preference: {profile.payout_preference}')

        if not profile.discord_id:
            return _Route(method, DISCORD_NOT_LINKED)
        return _Route(method)

    def _defer(self, user_id: str, amount: Decimal, transaction_type: str, source_id) -> PayoutResult:
        try:
            self.ledger.add_pending_earnings(user_id, amount, transaction_type, source_id)
        except PersistenceError as e:
            logger.error(f"Could not store pending earning for {user_id}: {e}")
            return PayoutResult(False, PayoutStatus.FAILED, amount, error=e.message)
        return PayoutResult(True, PayoutStatus.DEFERRED, amount)

    def _fail_and_keep(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: str,
        source_id,
        error: str,
        method: Optional[str] = None
    ) -> PayoutResult:
        """Report failure but keep the new amount pending so nothing is lost."""
        held = True
        try:
            self.ledger.add_pending_earnings(user_id, amount, transaction_type, source_id)
        except PersistenceError as e:
            logger.error(f"Could not store pending earning for {user_id}: {e}")
            held = False
        return PayoutResult(False, PayoutStatus.FAILED, amount, method=method, error=error, held=held)

    def _record_transaction(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: str,
        method: str,
        source_id,
        earning_ids: List[str],
        status: str = TransactionStatus.PENDING,
        error: Optional[str] = None
    ) -> str:
        transaction_id = f'{method or "payout"}_{uuid.uuid4().hex}'
        item = {
            'transactionId': transaction_id,
            'userId': user_id,
            'amount': amount,
            'type': transaction_type,
            'method': method,
            'status': status,
            'sourceId': str(source_id) if source_id is not None else None,
            'earningIds': earning_ids,
            'createdAt': _now(),
        }
        if error:
            item['errorMessage'] = error
        self.store.put_item(self.transactions_table, item, unique_attribute='transactionId')
        return transaction_id

    def _record_rejected(self, user_id: str, total: Decimal, transaction_type: str, route: _Route, source_id):
        try:
            return self._record_transaction(
                user_id, total, transaction_type, route.method, source_id, [],
                status=TransactionStatus.FAILED, error=route.error
            )
        except PersistenceError as e:
            logger.error(f"Could not record rejected payout for {user_id}: {e}")
            return None

    def _mark_transaction(self, transaction_id: str, status: str, error: Optional[str] = None) -> None:
        updates = {'status': status}
        if status == TransactionStatus.COMPLETED:
            updates['completedAt'] = _now()
        if error:
            updates['errorMessage'] = error
        try:
            self.store.update_item(
                self.transactions_table,
                {'transactionId': transaction_id},
                updates=updates,
                condition={'status': TransactionStatus.PENDING}
            )
        except PersistenceError as e:
            logger.error(f"Could not mark transaction {transaction_id} {status}: {e}")

    def update_user_earnings(self, user_id: str, amount: Decimal, category: str) -> None:
        """Add a disbursed amount to the user's yearly aggregate."""
        year = datetime.now(timezone.utc).year
        self.store.update_item(
            self.earnings_table,
            {'userId': user_id, 'year': year},
            updates={'updatedAt': _now()},
            increments={'totalEarnings': amount, f'{category}Earnings': amount}
        )

    def _disburse(
        self,
        profile: UserProfile,
        claimed_rows: List[Dict[str, Any]],
        new_amount: Decimal,
        total: Decimal,
        transaction_type: str,
        source_id,
        method: str
    ) -> PayoutResult:
        user_id = profile.user_id
        earning_ids = [r['earningId'] for r in claimed_rows]

        try:
            transaction_id = self._record_transaction(user_id, total, transaction_type, method, source_id, earning_ids)
        except PersistenceError as e:
            self._release(claimed_rows)
            return self._fail_and_keep(user_id, new_amount, transaction_type, source_id, e.message, method)

        try:
            self.balance_client.credit_balance(
                profile.discord_id,
                total,
                payout_reason(transaction_type, source_id)
            )
        except (UpstreamError, ConfigError) as e:
            logger.error(f"Balance credit failed for {user_id}: {e}")
            self._mark_transaction(transaction_id, TransactionStatus.FAILED, e.message)
            self._release(claimed_rows)
            result = self._fail_and_keep(user_id, new_amount, transaction_type, source_id, e.message, method)
            result.transaction_id = transaction_id
            return result

        # Money has moved; bookkeeping failures below are logged, never reported as a failed payout
        self._mark_transaction(transaction_id, TransactionStatus.COMPLETED)
        try:
            self.update_user_earnings(user_id, total, earning_category(transaction_type))
        except PersistenceError as e:
            logger.error(f"Could not update yearly earnings for {user_id} after {transaction_id}: {e}")
        if claimed_rows:
            try:
                self.ledger.settle(claimed_rows, transaction_id)
            except PersistenceError as e:
                logger.critical(f"Paid {transaction_id} but could not settle earnings {earning_ids}: {e}")

        logger.info(f"Paid {total} to {user_id} via {method} ({transaction_id})")
        return PayoutResult(True, PayoutStatus.PAID, total, method=method, transaction_id=transaction_id)

    def _release(self, claimed_rows: List[Dict[str, Any]]) -> None:
        if not claimed_rows:
            return
        try:
            self.ledger.release(claimed_rows)
        except PersistenceError as e:
            logger.critical(f"Could not release claimed earnings {[r['earningId'] for r in claimed_rows]}: {e}")
