"""
Earnings ledger - pending earnings per user.

Rows accumulate in 'pending' until a payout clears them. Payouts use the
claim/settle/release primitives so two concurrent payouts can never
disburse the same rows:

    pending --claim--> processing --settle--> processed
                           |
                           +--release--> pending
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from shared.config import config
from shared.dynamo import MAX_TRANSACT_ITEMS
from shared.errors import ConflictError, ValidationError
from shared.logging import logger
from shared.models import PendingStatus, TransactionType, to_money


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _keys(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{'userId': r['userId'], 'earningId': r['earningId']} for r in rows]


class EarningsLedger:
    """Pending earnings rows keyed by (userId, earningId)."""

    def __init__(self, store, table_name: str = None):
        self.store = store
        self.table_name = table_name or config.PENDING_EARNINGS_TABLE

    def add_pending_earnings(
        self,
        user_id: str,
        amount: Decimal,
        source_type: str,
        source_id: Optional[str] = None
    ) -> str:
        """Append a pending row. Returns its earning id."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError('Pending earnings must be positive')
        if source_type not in TransactionType.ALL:
            raise ValidationError(f'Unknown earning source: {source_type}')

        earning_id = str(uuid.uuid4())
        self.store.put_item(self.table_name, {
            'userId': user_id,
            'earningId': earning_id,
            'amount': amount,
            'sourceType': source_type,
            'sourceId': str(source_id) if source_id is not None else None,
            'status': PendingStatus.PENDING,
            'createdAt': _now(),
        })
        logger.info(f"Added pending earning {amount} ({source_type}) for user {user_id}")
        return earning_id

    def list_pending(self, user_id: str) -> List[Dict[str, Any]]:
        """Pending rows for a user, oldest first."""
        rows = self.store.query(
            self.table_name,
            'userId',
            user_id,
            filters={'status': PendingStatus.PENDING}
        )
        return sorted(rows, key=lambda r: r.get('createdAt', ''))

    def get_pending_earnings(self, user_id: str) -> Decimal:
        """Sum of a user's pending rows."""
        return sum((to_money(r.get('amount', 0)) for r in self.list_pending(user_id)), Decimal('0.00'))

    def clear_pending_earnings(self, user_id: str) -> int:
        """
        Mark every pending row processed. Rows another writer already moved
        on are skipped. Returns the number of rows cleared.
        """
        cleared = 0
        for row in self.list_pending(user_id):
            try:
                self.store.update_item(
                    self.table_name,
                    {'userId': row['userId'], 'earningId': row['earningId']},
                    updates={'status': PendingStatus.PROCESSED, 'processedAt': _now()},
                    condition={'status': PendingStatus.PENDING}
                )
                cleared += 1
            except ConflictError:
                logger.info(f"Pending earning {row['earningId']} already handled")
        return cleared

    def claim(self, rows: List[Dict[str, Any]]) -> None:
        """
        Atomically move rows pending → processing.

        Raises:
            ConflictError: at least one row was no longer pending; none were claimed
        """
        if len(rows) > MAX_TRANSACT_ITEMS:
            raise ValidationError(f'Cannot claim more than {MAX_TRANSACT_ITEMS} rows at once')
        self.store.transact_update(
            self.table_name,
            _keys(rows),
            updates={'status': PendingStatus.PROCESSING, 'claimedAt': _now()},
            condition={'status': PendingStatus.PENDING}
        )

    def settle(self, rows: List[Dict[str, Any]], transaction_id: str) -> None:
        """Claimed rows → processed, linked to the payout transaction."""
        self.store.transact_update(
            self.table_name,
            _keys(rows),
            updates={
                'status': PendingStatus.PROCESSED,
                'processedAt': _now(),
                'transactionId': transaction_id,
            },
            condition={'status': PendingStatus.PROCESSING}
        )

    def release(self, rows: List[Dict[str, Any]]) -> None:
        """Claimed rows → pending again after a failed disbursement."""
        self.store.transact_update(
            self.table_name,
            _keys(rows),
            updates={'status': PendingStatus.PENDING},
            condition={'status': PendingStatus.PROCESSING}
        )
