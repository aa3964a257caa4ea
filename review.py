"""
Candidate review workflow

Medium-confidence matches wait as candidates until an operator promotes them
to an image link or rejects them. Approved and rejected are final.
"""

import logging
from typing import Dict, List, Optional

from database import LinkDatabase
from sku_linker.errors import (
    CandidateNotFound,
    DuplicateLinkSkip,
    InvalidCandidateState,
    LinkerError,
)
from sku_linker.models import CANDIDATE_PENDING, CANDIDATE_REJECTED, ImageCandidate

logger = logging.getLogger(__name__)


class CandidateReviewer:
    """Promotes or rejects pending image candidates"""

    def __init__(self, db: LinkDatabase):
        self.db = db

    def _get_pending(self, candidate_id: int) -> ImageCandidate:
        candidate = self.db.get_candidate(candidate_id)
        if candidate is None:
            raise CandidateNotFound(candidate_id)
        if candidate.status != CANDIDATE_PENDING:
            raise InvalidCandidateState(candidate_id, candidate.status)
        return candidate

    def promote(self, candidate_id: int) -> int:
        """
        Turn a pending candidate into an active image link.

        Args:
            candidate_id: Candidate to promote

        Returns:
            ID of the created image link

        Raises:
            CandidateNotFound: No such candidate
            InvalidCandidateState: Candidate was already approved or rejected
            DuplicateLinkSkip: The product already has an active link (candidate stays pending)
        """
        candidate = self._get_pending(candidate_id)

        if self.db.has_active_link(candidate.product_id):
            raise DuplicateLinkSkip(candidate.product_id)

        link_id = self.db.approve_candidate(candidate)
        logger.info(f"Promoted candidate {candidate_id} ({candidate.source_filename}) "
                    f"to link {link_id} for product {candidate.product_id}")
        return link_id

    def reject(self, candidate_id: int, reason: str = None) -> None:
        """
        Reject a pending candidate.

        Raises:
            CandidateNotFound: No such candidate
            InvalidCandidateState: Candidate was already approved or rejected
        """
        self._get_pending(candidate_id)
        self.db.update_candidate_status(candidate_id, CANDIDATE_REJECTED, reason)
        logger.info(f"Rejected candidate {candidate_id}" + (f": {reason}" if reason else ""))

    def auto_promote(self, min_confidence: int = 70) -> Dict:
        """
        Promote every pending candidate at or above min_confidence, highest first.

        Returns:
            Dictionary with promoted, skipped and failed counts and error messages
        """
        results = {'promoted': 0, 'skipped': 0, 'failed': 0, 'errors': []}

        candidates = self.db.list_candidates(status=CANDIDATE_PENDING, min_confidence=min_confidence,
                                             limit=-1)
        logger.info(f"Auto-promoting {len(candidates)} candidates with confidence >= {min_confidence}")

        for candidate in candidates:
            try:
                self.promote(candidate.id)
                results['promoted'] += 1
            except DuplicateLinkSkip as e:
                # A higher-confidence candidate for the same product won
                logger.debug(str(e))
                results['skipped'] += 1
            except LinkerError as e:
                logger.warning(f"Could not promote candidate {candidate.id}: {str(e)}")
                results['failed'] += 1
                results['errors'].append(f"Candidate {candidate.id}: {str(e)}")

        logger.info(f"Auto-promote finished: {results['promoted']} promoted, "
                    f"{results['skipped']} skipped, {results['failed']} failed")
        return results

    def list_candidates(self, status: Optional[str] = CANDIDATE_PENDING, product_id: str = None,
                        search: str = None, limit: int = 100) -> List[ImageCandidate]:
        """Candidates for the review queue, highest confidence first"""
        return self.db.list_candidates(status=status, product_id=product_id, search=search, limit=limit)
