"""
Tests for the provider postback / completion webhook flow.
"""
from decimal import Decimal

import pytest

from conftest import SECURITY_KEY, TABLES
from shared.errors import ValidationError
from shared.postbacks import map_status
from shared.signatures import generate_secure_hash

POSTBACKS = TABLES['POSTBACKS_TABLE']
FEEDBACK = TABLES['FEEDBACK_TABLE']
STATS = TABLES['COMPLETION_STATS_TABLE']
PENDING = TABLES['PENDING_EARNINGS_TABLE']


def postback(trans_id='12345678', status='1', amount='6.00', **overrides):
    params = {
        'status': status,
        'trans_id': trans_id,
        'user_id': 'user-1',
        'amount_usd': amount,
        'amount_local': amount,
        'offer_id': 'offer-1',
        'ip_click': '203.0.113.7',
        'hash': generate_secure_hash(trans_id, SECURITY_KEY),
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


class TestStatusMapping:

    @pytest.mark.parametrize('code,result', [
        ('1', 'completed'),
        ('2', 'disqualified'),
        ('0', 'abandoned'),
        ('3', 'abandoned'),
        ('', 'abandoned'),
    ])
    def test_codes(self, code, result):
        assert map_status(code) == result


class TestPostbackValidation:

    def test_missing_fields_rejected(self, services):
        response = services.postbacks.process({'status': '1', 'user_id': 'user-1'})
        assert (response.status_code, response.body) == (400, '0')

    def test_bad_hash_rejected(self, services, add_profile):
        add_profile('user-1')
        response = services.postbacks.process(postback(hash='0' * 32))
        assert (response.status_code, response.body) == (401, '0')

    def test_missing_hash_rejected_when_required(self, services):
        response = services.postbacks.process(postback(hash=None))
        assert (response.status_code, response.body) == (401, '0')

    def test_missing_hash_accepted_when_not_required(self, services, add_profile):
        add_profile('user-1')
        services.postbacks.require_hash = False

        response = services.postbacks.process(postback(hash=None))

        assert (response.status_code, response.body) == (200, '1')

    def test_unconfigured_secret_is_service_unavailable(self, services):
        services.postbacks.secret = ''
        response = services.postbacks.process(postback())
        assert (response.status_code, response.body) == (503, '0')

    def test_invalid_amount_rejected(self, services):
        response = services.postbacks.process(postback(amount='lots'))
        assert (response.status_code, response.body) == (400, '0')


class TestPostbackCompletion:

    def test_completed_postback_pays_and_records(self, services, store, balance_client, add_profile):
        add_profile('user-1')

        response = services.postbacks.process(postback())

        assert (response.status_code, response.body) == (200, '1')
        assert balance_client.credits[0]['amount'] == Decimal('6.00')

        row = store.get_item(POSTBACKS, {'transId': '12345678'})
        assert row['result'] == 'completed'
        assert row['payoutSuccess'] is True
        assert row['payoutStatus'] == 'paid'

        feedback = store.all(FEEDBACK)
        assert len(feedback) == 1
        assert feedback[0]['result'] == 'completed'
        assert feedback[0]['rewardEarned'] == Decimal('6.00')
        assert feedback[0]['userAttributes']['country'] == 'United States'

        stats = store.get_item(STATS, {'userId': 'user-1'})
        assert stats['totalAttempts'] == 1
        assert stats['completedSurveys'] == 1
        assert stats['completionRate'] == Decimal('100.00')

    def test_small_completion_goes_pending(self, services, store, balance_client, add_profile):
        add_profile('user-1')

        services.postbacks.process(postback(amount='0.80'))

        assert balance_client.credits == []
        assert services.ledger.get_pending_earnings('user-1') == Decimal('0.80')

    def test_disqualified_records_feedback_only(self, services, store, balance_client, add_profile):
        add_profile('user-1')

        response = services.postbacks.process(postback(status='2'))

        assert response.body == '1'
        assert balance_client.credits == []
        assert store.all(PENDING) == []
        assert store.get_item(POSTBACKS, {'transId': '12345678'})['reward'] == Decimal('0.00')
        feedback = store.all(FEEDBACK)[0]
        assert feedback['result'] == 'disqualified'
        assert feedback['rewardEarned'] == Decimal('0')
        stats = store.get_item(STATS, {'userId': 'user-1'})
        assert stats['completedSurveys'] == 0
        assert stats['completionRate'] == Decimal('0.00')

    def test_redelivery_is_acknowledged_once(self, services, store, balance_client, add_profile):
        add_profile('user-1')

        first = services.postbacks.process(postback())
        second = services.postbacks.process(postback())

        assert first.body == second.body == '1'
        assert len(balance_client.credits) == 1
        assert len(store.all(POSTBACKS)) == 1
        assert len(store.all(FEEDBACK)) == 1
        assert store.get_item(STATS, {'userId': 'user-1'})['totalAttempts'] == 1

    def test_unknown_user_still_acknowledged(self, services, store):
        response = services.postbacks.process(postback())

        assert (response.status_code, response.body) == (200, '1')
        row = store.get_item(POSTBACKS, {'transId': '12345678'})
        assert row['payoutSuccess'] is False

    def test_internal_error_still_acknowledged(self, services, store, add_profile):
        add_profile('user-1')
        store.failing_tables.add(POSTBACKS)

        response = services.postbacks.process(postback())

        assert (response.status_code, response.body) == (200, '1')


class TestSurveyCompletionWebhook:

    def payload(self, **overrides):
        data = {
            'user_id': 'user-1',
            'survey_id': 'survey_42',
            'provider': 'bitlabs',
            'status': 'completed',
            'payout': 7.25,
            'time_spent': 540,
        }
        data.update(overrides)
        return data

    def test_completed(self, services, store, balance_client, add_profile):
        add_profile('user-1')

        result = services.postbacks.process_survey_completion(self.payload())

        assert result['success'] is True
        assert balance_client.credits[0]['amount'] == Decimal('7.25')
        feedback = store.all(FEEDBACK)[0]
        assert feedback['provider'] == 'bitlabs'
        assert feedback['timeSpent'] == 540

    def test_abandoned_is_not_paid(self, services, balance_client, add_profile):
        add_profile('user-1')

        services.postbacks.process_survey_completion(self.payload(status='abandoned'))

        assert balance_client.credits == []

    def test_missing_fields(self, services):
        with pytest.raises(ValidationError):
            services.postbacks.process_survey_completion(self.payload(provider=''))

    def test_unknown_status(self, services):
        with pytest.raises(ValidationError):
            services.postbacks.process_survey_completion(self.payload(status='paid'))

    def test_duplicate_is_ignored(self, services, balance_client, add_profile):
        add_profile('user-1')

        services.postbacks.process_survey_completion(self.payload())
        result = services.postbacks.process_survey_completion(self.payload())

        assert result['message'] == 'Duplicate webhook ignored'
        assert len(balance_client.credits) == 1
