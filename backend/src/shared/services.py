"""
Service wiring.

Handlers call get_services() once per invocation; the objects are built on
the first call and reused for the lifetime of the Lambda container.
"""
from dataclasses import dataclass
from typing import Optional
from shared.ai_services import TextCompletionClient
from shared.balance_service import BalanceServiceClient
from shared.dynamo import DynamoStore
from shared.feedback import CompletionFeedbackRecorder
from shared.ledger import EarningsLedger
from shared.microtasks import MicrotaskService
from shared.payouts import PayoutRouter
from shared.postbacks import PostbackProcessor
from shared.ranking import MatchRanker
from shared.scoring import MatchScorer


@dataclass
class Services:
    store: DynamoStore
    feedback: CompletionFeedbackRecorder
    ranker: MatchRanker
    ledger: EarningsLedger
    balance_client: BalanceServiceClient
    payouts: PayoutRouter
    postbacks: PostbackProcessor
    microtasks: MicrotaskService


def build_services(
    store=None,
    completion_client=None,
    balance_client=None
) -> Services:
    """Construct the service graph; collaborators can be swapped in for tests."""
    store = store or DynamoStore()
    completion_client = completion_client or TextCompletionClient()
    balance_client = balance_client or BalanceServiceClient()

    feedback = CompletionFeedbackRecorder(store)
    ledger = EarningsLedger(store)
    payouts = PayoutRouter(store, ledger, balance_client)

    return Services(
        store=store,
        feedback=feedback,
        ranker=MatchRanker(MatchScorer(completion_client), feedback),
        ledger=ledger,
        balance_client=balance_client,
        payouts=payouts,
        postbacks=PostbackProcessor(store, payouts, feedback),
        microtasks=MicrotaskService(store, payouts),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the cached services (None resets)."""
    global _services
    _services = services
