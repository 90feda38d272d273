"""
Match ranker: eligibility filter → per-offer scoring → sort → slice.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from shared.eligibility import filter_eligible
from shared.logging import logger
from shared.models import MatchScore, SurveyOffer, UserProfile
from shared.scoring import basic_score


class MatchRanker:
    """Produces the top-N offers for a profile."""

    def __init__(self, scorer, feedback_recorder=None):
        self.scorer = scorer
        self.feedback_recorder = feedback_recorder

    def _historical(self, profile: UserProfile, offer: SurveyOffer) -> Dict[str, Any]:
        if self.feedback_recorder is None:
            return {}
        return self.feedback_recorder.get_historical_performance(offer.provider, profile.user_id)

    def score_offer(self, profile: UserProfile, offer: SurveyOffer) -> MatchScore:
        """Score one offer; never raises."""
        try:
            return self.scorer.score(profile, offer, self._historical(profile, offer))
        except Exception as e:
            logger.error(f"Error scoring offer {offer.id}: {e}")
            return basic_score(offer)

    def get_top_matches(
        self,
        profile: UserProfile,
        offers: Sequence[SurveyOffer],
        limit: int = 3,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Rank offers for a profile.

        Returns:
            {
                'matches': [(offer, MatchScore), ...] best first, at most `limit`,
                'totalAnalyzed': number of offers passed in (before filtering)
            }
        """
        eligible = filter_eligible(profile, offers, now)
        scored = [(offer, self.score_offer(profile, offer)) for offer in eligible]

        # sorted() is stable, so equal scores keep their input order
        ranked = sorted(scored, key=lambda pair: pair[1].score, reverse=True)

        logger.info(
            f"Ranked {len(eligible)}/{len(offers)} eligible offers for user {profile.user_id}"
        )
        return {
            'matches': ranked[:max(limit, 0)],
            'totalAnalyzed': len(offers),
        }


def serialize_matches(result: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-ready form of get_top_matches output."""
    matches: List[Dict[str, Any]] = []
    for offer, score in result['matches']:
        entry = offer.to_dict()
        entry['matchScore'] = score.to_dict()
        matches.append(entry)
    return {'matches': matches, 'totalAnalyzed': result['totalAnalyzed']}
