"""
Shared fixtures: an in-memory stand-in for DynamoStore and fake external clients.
"""
import copy
import os
import sys
from collections import defaultdict
from decimal import Decimal

import pytest

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

TABLES = {
    'PROFILES_TABLE': 'test-profiles',
    'OFFERS_TABLE': 'test-offers',
    'FEEDBACK_TABLE': 'test-feedback',
    'PENDING_EARNINGS_TABLE': 'test-pending-earnings',
    'PAYOUT_TRANSACTIONS_TABLE': 'test-payout-transactions',
    'USER_EARNINGS_TABLE': 'test-user-earnings',
    'POSTBACKS_TABLE': 'test-postbacks',
    'COMPLETION_STATS_TABLE': 'test-completion-stats',
    'MICROTASKS_TABLE': 'test-microtasks',
    'MICROTASK_COMPLETIONS_TABLE': 'test-microtask-completions',
}

# Config is read at import time, so the environment is set before any shared import
os.environ.update(TABLES)
os.environ['CPX_APP_ID'] = '12345'
os.environ['CPX_SECURITY_HASH_KEY'] = 'VlS4csbvdjWxI6J6AZwwsOD3BTC1pkKL'
os.environ['REQUIRE_POSTBACK_HASH'] = 'true'
os.environ['WEBHOOK_SECRET_TOKEN'] = 'test-webhook-token'
os.environ['JUSTTHETIP_API_URL'] = 'https://justthetip.test'
os.environ['JUSTTHETIP_API_KEY'] = 'test-jtt-key'
os.environ['AI_SCORING_API_KEY'] = ''

from shared.errors import ConflictError, DuplicateError, PersistenceError  # noqa: E402
from shared.services import build_services, set_services  # noqa: E402

SECURITY_KEY = os.environ['CPX_SECURITY_HASH_KEY']

KEY_SCHEMA = {
    TABLES['PROFILES_TABLE']: ('userId',),
    TABLES['OFFERS_TABLE']: ('offerId',),
    TABLES['FEEDBACK_TABLE']: ('feedbackId',),
    TABLES['PENDING_EARNINGS_TABLE']: ('userId', 'earningId'),
    TABLES['PAYOUT_TRANSACTIONS_TABLE']: ('transactionId',),
    TABLES['USER_EARNINGS_TABLE']: ('userId', 'year'),
    TABLES['POSTBACKS_TABLE']: ('transId',),
    TABLES['COMPLETION_STATS_TABLE']: ('userId',),
    TABLES['MICROTASKS_TABLE']: ('microtaskId',),
    TABLES['MICROTASK_COMPLETIONS_TABLE']: ('completionId',),
}

# Sort attribute per (table, index)
SORT_KEYS = {
    (TABLES['PENDING_EARNINGS_TABLE'], None): 'earningId',
    (TABLES['FEEDBACK_TABLE'], 'byProvider'): 'timestamp',
    (TABLES['PAYOUT_TRANSACTIONS_TABLE'], 'byUser'): 'createdAt',
    (TABLES['MICROTASK_COMPLETIONS_TABLE'], 'byUser'): 'submittedAt',
}


def _stored(value):
    """Mimic DynamoDB: every number comes back as Decimal."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _stored(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stored(v) for v in value]
    return value


def _matches(item, conditions, missing_ok=()):
    return all(
        (name in item and item[name] == value) or (name not in item and name in missing_ok)
        for name, value in (conditions or {}).items()
    )


class InMemoryStore:
    """Implements the DynamoStore surface over plain dicts."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.failing_tables = set()

    def _check(self, table_name):
        if table_name in self.failing_tables:
            raise PersistenceError(f"Could not write to {table_name}")

    def _key(self, table_name, item):
        return {name: item.get(name) for name in KEY_SCHEMA[table_name]}

    def _find(self, table_name, key):
        for item in self.tables[table_name]:
            if all(item.get(k) == v for k, v in key.items()):
                return item
        return None

    def seed(self, table_name, *items):
        for item in items:
            self.tables[table_name].append(_stored(copy.deepcopy(item)))

    def all(self, table_name):
        return copy.deepcopy(self.tables[table_name])

    def get_item(self, table_name, key):
        item = self._find(table_name, key)
        return copy.deepcopy(item) if item else None

    def put_item(self, table_name, item, unique_attribute=None):
        self._check(table_name)
        item = _stored(copy.deepcopy(item))
        existing = self._find(table_name, self._key(table_name, item))
        if existing is not None:
            if unique_attribute:
                raise DuplicateError(f"{unique_attribute}={item.get(unique_attribute)} already exists")
            self.tables[table_name].remove(existing)
        self.tables[table_name].append(item)

    def query(self, table_name, key_name, key_value, index_name=None, filters=None, limit=None, scan_forward=True):
        rows = [
            copy.deepcopy(i) for i in self.tables[table_name]
            if i.get(key_name) == key_value and _matches(i, filters)
        ]
        sort_key = SORT_KEYS.get((table_name, index_name))
        if sort_key:
            rows.sort(key=lambda r: str(r.get(sort_key, '')), reverse=not scan_forward)
        elif not scan_forward:
            rows.reverse()
        return rows[:limit] if limit else rows

    def scan(self, table_name, filters=None):
        return [copy.deepcopy(i) for i in self.tables[table_name] if _matches(i, filters)]

    def _apply(self, item, updates, increments):
        for name, value in (updates or {}).items():
            item[name] = _stored(value)
        for name, value in (increments or {}).items():
            item[name] = item.get(name, Decimal('0')) + Decimal(str(value))

    def update_item(self, table_name, key, updates=None, increments=None, condition=None, missing_ok=None):
        self._check(table_name)
        item = self._find(table_name, key)
        if condition and (item is None or not _matches(item, _stored(condition), set(missing_ok or ()))):
            raise ConflictError(f"Condition failed updating {key} in {table_name}")
        if item is None:
            item = _stored(dict(key))
            self.tables[table_name].append(item)
        self._apply(item, updates, increments)

    def transact_update(self, table_name, keys, updates, condition=None):
        self._check(table_name)
        items = [self._find(table_name, key) for key in keys]
        if condition and any(i is None or not _matches(i, _stored(condition)) for i in items):
            raise ConflictError(f"Transaction on {table_name} was cancelled")
        for item in items:
            if item is not None:
                self._apply(item, updates, None)


class FakeBalanceClient:
    """Records credits instead of calling JustTheTip."""

    def __init__(self):
        self.credits = []
        self.error = None
        self.balances = {}

    def credit_balance(self, discord_id, amount, reason):
        if self.error is not None:
            raise self.error
        self.credits.append({'discord_id': discord_id, 'amount': amount, 'reason': reason})

    def get_user_balance(self, discord_id):
        return self.balances.get(discord_id, Decimal('0'))


class FakeCompletionClient:
    """Returns canned AI replies; disabled when no reply is configured."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    @property
    def enabled(self):
        return self.reply is not None or self.error is not None

    def complete(self, prompt, system_prompt=None, **kwargs):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def make_profile(user_id='user-1', **overrides):
    profile = {
        'userId': user_id,
        'age': '25-34',
        'gender': 'Female',
        'location': 'United States',
        'device': 'desktop',
        'hobbies': ['fitness'],
        'employment': 'full-time',
        'income': '50k-75k',
        'completionRate': 80,
        'discordId': f'discord-{user_id}',
        'payoutPreference': 'balance_service',
        'minimumPayout': '5.00',
        'email': f'{user_id}@example.com',
        'username': user_id,
    }
    profile.update(overrides)
    return profile


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def balance_client():
    return FakeBalanceClient()


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def services(store, balance_client, completion_client):
    built = build_services(store=store, completion_client=completion_client, balance_client=balance_client)
    set_services(built)
    yield built
    set_services(None)


@pytest.fixture
def add_profile(store):
    def _add(user_id='user-1', **overrides):
        item = make_profile(user_id, **overrides)
        store.seed(TABLES['PROFILES_TABLE'], item)
        return item
    return _add


@pytest.fixture
def add_pending(store):
    def _add(user_id, amount, created_at='2025-01-01T00:00:00+00:00', earning_id=None):
        store.seed(TABLES['PENDING_EARNINGS_TABLE'], {
            'userId': user_id,
            'earningId': earning_id or f'earning-{len(store.tables[TABLES["PENDING_EARNINGS_TABLE"]])}',
            'amount': Decimal(amount),
            'sourceType': 'survey_completion',
            'sourceId': 'seed',
            'status': 'pending',
            'createdAt': created_at,
        })
    return _add
