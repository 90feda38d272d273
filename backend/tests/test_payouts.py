"""
Tests for the earnings ledger and payout routing.
"""
from decimal import Decimal

import pytest

from conftest import TABLES
from shared.errors import ConflictError, UpstreamError, ValidationError
from shared.ledger import EarningsLedger
from shared.payouts import DISCORD_NOT_LINKED, WALLET_NOT_SUPPORTED, PayoutRouter, PayoutStatus

PENDING = TABLES['PENDING_EARNINGS_TABLE']
TRANSACTIONS = TABLES['PAYOUT_TRANSACTIONS_TABLE']
EARNINGS = TABLES['USER_EARNINGS_TABLE']


@pytest.fixture
def ledger(store):
    return EarningsLedger(store)


@pytest.fixture
def router(store, ledger, balance_client):
    return PayoutRouter(store, ledger, balance_client)


class TestEarningsLedger:

    def test_add_and_sum_pending(self, ledger):
        ledger.add_pending_earnings('user-1', Decimal('1.25'), 'survey_completion', 's1')
        ledger.add_pending_earnings('user-1', '0.75', 'microtask_completion', 't1')
        ledger.add_pending_earnings('user-2', '9.00', 'survey_completion', 's2')

        assert ledger.get_pending_earnings('user-1') == Decimal('2.00')
        assert ledger.get_pending_earnings('nobody') == Decimal('0.00')

    def test_rejects_bad_input(self, ledger):
        with pytest.raises(ValidationError):
            ledger.add_pending_earnings('user-1', '0', 'survey_completion')
        with pytest.raises(ValidationError):
            ledger.add_pending_earnings('user-1', '1.00', 'lottery')
        with pytest.raises(ValidationError):
            ledger.add_pending_earnings('user-1', 'abc', 'survey_completion')

    def test_clear_pending(self, ledger, store):
        ledger.add_pending_earnings('user-1', '1.00', 'survey_completion')
        ledger.add_pending_earnings('user-1', '2.00', 'survey_completion')

        assert ledger.clear_pending_earnings('user-1') == 2
        assert ledger.get_pending_earnings('user-1') == Decimal('0.00')
        assert {row['status'] for row in store.all(PENDING)} == {'processed'}

    def test_claim_is_all_or_nothing(self, ledger, add_pending):
        add_pending('user-1', '1.00', earning_id='e1')
        add_pending('user-1', '2.00', earning_id='e2')
        rows = ledger.list_pending('user-1')

        ledger.claim(rows[:1])
        with pytest.raises(ConflictError):
            ledger.claim(rows)

        # e2 untouched by the failed claim
        assert [r['earningId'] for r in ledger.list_pending('user-1')] == ['e2']

    def test_release_returns_rows_to_pending(self, ledger, add_pending):
        add_pending('user-1', '1.00', earning_id='e1')
        rows = ledger.list_pending('user-1')

        ledger.claim(rows)
        assert ledger.get_pending_earnings('user-1') == Decimal('0.00')
        ledger.release(rows)
        assert ledger.get_pending_earnings('user-1') == Decimal('1.00')


class TestPayoutThreshold:

    def test_below_minimum_is_deferred(self, router, ledger, balance_client, add_profile, add_pending):
        add_profile('user-1')
        add_pending('user-1', '3.00')

        result = router.process_payout('user-1', Decimal('1.00'), 'survey_completion', 'survey-9')

        assert result.success is True
        assert result.status == PayoutStatus.DEFERRED
        assert result.method is None
        assert balance_client.credits == []
        assert ledger.get_pending_earnings('user-1') == Decimal('4.00')

    def test_reaching_minimum_pays_total_and_clears_pending(
        self, router, ledger, store, balance_client, add_profile, add_pending
    ):
        add_profile('user-1')
        add_pending('user-1', '3.00')

        result = router.process_payout('user-1', Decimal('2.50'), 'survey_completion', 'survey-9')

        assert result.success is True
        assert result.status == PayoutStatus.PAID
        assert result.method == 'balance_service'
        assert result.amount == Decimal('5.50')
        assert balance_client.credits == [{
            'discord_id': 'discord-user-1',
            'amount': Decimal('5.50'),
            'reason': 'Survey completion reward - Survey #survey-9',
        }]
        assert ledger.get_pending_earnings('user-1') == Decimal('0.00')

        transaction = store.get_item(TRANSACTIONS, {'transactionId': result.transaction_id})
        assert transaction['status'] == 'completed'
        assert transaction['amount'] == Decimal('5.50')
        assert len(transaction['earningIds']) == 1

        pending_rows = store.all(PENDING)
        assert pending_rows[0]['status'] == 'processed'
        assert pending_rows[0]['transactionId'] == result.transaction_id

    def test_yearly_earnings_are_incremented(self, router, store, add_profile):
        add_profile('user-1', minimumPayout='1.00')

        router.process_payout('user-1', '2.00', 'survey_completion', 's1')
        router.process_payout('user-1', '3.00', 'survey_completion', 's2')

        rows = store.all(EARNINGS)
        assert len(rows) == 1
        assert rows[0]['totalEarnings'] == Decimal('5.00')
        assert rows[0]['surveyEarnings'] == Decimal('5.00')

    def test_profile_minimum_defaults_when_unset(self, router, balance_client, store, add_profile):
        item = add_profile('user-1')
        del item['minimumPayout']
        store.tables[TABLES['PROFILES_TABLE']] = []
        store.seed(TABLES['PROFILES_TABLE'], item)

        result = router.process_payout('user-1', '4.99', 'survey_completion', 's1')

        assert result.status == PayoutStatus.DEFERRED
        assert balance_client.credits == []

    def test_invalid_amount_raises(self, router, add_profile):
        add_profile('user-1')
        with pytest.raises(ValidationError):
            router.process_payout('user-1', '-1', 'survey_completion', 's1')

    def test_unknown_user_is_a_failure(self, router):
        result = router.process_payout('ghost', '10.00', 'survey_completion', 's1')
        assert result.success is False
        assert result.status == PayoutStatus.FAILED


class TestPayoutRouting:

    def test_wallet_preference_fails_and_keeps_earnings(self, router, ledger, store, balance_client, add_profile):
        add_profile('user-1', payoutPreference='wallet', walletAddress='0xabc')

        result = router.process_payout('user-1', '10.00', 'survey_completion', 's1')

        assert result.success is False
        assert result.error == WALLET_NOT_SUPPORTED
        assert result.method == 'wallet'
        assert balance_client.credits == []
        assert ledger.get_pending_earnings('user-1') == Decimal('10.00')
        assert store.get_item(TRANSACTIONS, {'transactionId': result.transaction_id})['status'] == 'failed'

    def test_split_below_threshold_uses_balance_service(self, router, balance_client, add_profile):
        add_profile('user-1', payoutPreference='both')

        result = router.process_payout('user-1', '24.99', 'survey_completion', 's1')

        assert result.success is True
        assert result.method == 'balance_service'
        assert balance_client.credits[0]['amount'] == Decimal('24.99')

    def test_split_at_threshold_is_not_supported(self, router, ledger, balance_client, add_profile):
        add_profile('user-1', payoutPreference='split')

        result = router.process_payout('user-1', '25.00', 'survey_completion', 's1')

        assert result.success is False
        assert result.error == WALLET_NOT_SUPPORTED
        assert balance_client.credits == []
        assert ledger.get_pending_earnings('user-1') == Decimal('25.00')

    def test_missing_discord_link_fails(self, router, ledger, add_profile):
        add_profile('user-1', discordId=None)

        result = router.process_payout('user-1', '6.00', 'survey_completion', 's1')

        assert result.success is False
        assert result.error == DISCORD_NOT_LINKED
        assert ledger.get_pending_earnings('user-1') == Decimal('6.00')

    def test_balance_service_failure_releases_claim(
        self, router, ledger, store, balance_client, add_profile, add_pending
    ):
        add_profile('user-1')
        add_pending('user-1', '3.00')
        balance_client.error = UpstreamError('Balance service returned HTTP 503')

        result = router.process_payout('user-1', '2.50', 'survey_completion', 's1')

        assert result.success is False
        assert result.error == 'Balance service returned HTTP 503'
        assert result.held is True
        # 3.00 released back to pending plus the new 2.50
        assert ledger.get_pending_earnings('user-1') == Decimal('5.50')
        assert store.get_item(TRANSACTIONS, {'transactionId': result.transaction_id})['status'] == 'failed'
        assert store.all(EARNINGS) == []

    def test_concurrent_claim_defers(self, router, ledger, balance_client, add_profile, add_pending):
        add_profile('user-1')
        add_pending('user-1', '3.00')

        # Another payout claims the rows between listing and claiming
        real_list_pending = ledger.list_pending

        def list_then_steal(user_id):
            rows = real_list_pending(user_id)
            ledger.claim(rows)
            return rows

        ledger.list_pending = list_then_steal

        result = router.process_payout('user-1', '2.50', 'survey_completion', 's1')

        assert result.success is True
        assert result.status == PayoutStatus.DEFERRED
        assert balance_client.credits == []
        ledger.list_pending = real_list_pending
        assert ledger.get_pending_earnings('user-1') == Decimal('2.50')


class TestReferralAndSummary:

    def test_referral_bonus_skips_minimum(self, router, store, balance_client, add_profile):
        add_profile('user-1')

        result = router.process_referral_payout('user-1', 'ref-1', '1.00')

        assert result.success is True
        assert balance_client.credits[0]['reason'] == 'Referral bonus - Referral #ref-1'
        assert store.all(EARNINGS)[0]['referralEarnings'] == Decimal('1.00')

    def test_referral_without_discord_is_pending(self, router, ledger, add_profile):
        add_profile('user-1', discordId=None)

        result = router.process_referral_payout('user-1', 'ref-1', '1.00')

        assert result.status == PayoutStatus.DEFERRED
        assert ledger.get_pending_earnings('user-1') == Decimal('1.00')

    def test_summary(self, router, balance_client, add_profile, add_pending):
        add_profile('user-1', minimumPayout='1.00')
        router.process_payout('user-1', '2.00', 'survey_completion', 's1')
        add_pending('user-1', '0.40')
        balance_client.balances['discord-user-1'] = Decimal('12.34')

        summary = router.get_payout_summary('user-1')

        assert summary['paidAmount'] == Decimal('2.00')
        assert summary['pendingAmount'] == Decimal('0.40')
        assert summary['totalEarnings'] == Decimal('2.40')
        assert summary['justTheTipBalance'] == Decimal('12.34')
        assert len(summary['recentTransactions']) == 1
