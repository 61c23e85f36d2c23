"""Reconcile masternode votes for active proposals."""

import logging
import time

from ..clients.dash_core import DashCoreClient
from ..models import ProposalStatus, SyncResult, VoteData
from ..publisher import PlatformPublisher
from ..utils.hash_utils import normalize_hash
from ..utils.logging import error_context, log_with_context

logger = logging.getLogger(__name__)


class VoteSync:
    """
    Mirrors current votes of proposals whose stored status is active.

    Finalized proposals are not re-polled; their votes are treated as settled.
    The stored status is read rather than recomputed because ProposalSync may
    be running at the same time.
    """

    def __init__(self, dash_core: DashCoreClient, publisher: PlatformPublisher):
        self.dash_core = dash_core
        self.publisher = publisher

    async def sync(self) -> SyncResult:
        """
        Run one vote reconciliation pass over active proposals.

        Returns:
            SyncResult; a proposal whose votes cannot be fetched adds one error

        Raises:
            StoreError: If the active proposals cannot be listed
        """
        start_time = time.monotonic()
        result = SyncResult()

        logger.info("Starting vote sync")

        active_proposals = await self.publisher.get_proposals_by_status(ProposalStatus.ACTIVE)
        log_with_context(logger, logging.INFO, "Syncing votes for active proposals", count=len(active_proposals))

        for proposal in active_proposals:
            if not proposal.proposal_hash:
                continue
            await self._sync_votes_for_proposal(proposal.proposal_hash, result)

        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        log_with_context(logger, logging.INFO, "Vote sync completed", **result.to_dict())
        return result

    async def _sync_votes_for_proposal(self, proposal_hash: str, result: SyncResult) -> None:
        try:
            votes = await self.dash_core.get_governance_votes(proposal_hash)
        except Exception as e:
            log_with_context(
                logger, logging.ERROR, "Failed to fetch votes from Core",
                proposal_hash=proposal_hash, **error_context(e)
            )
            result.errors += 1
            return

        log_with_context(logger, logging.DEBUG, "Fetched votes from Core", proposal_hash=proposal_hash, count=len(votes))

        for vote in votes:
            try:
                upsert = await self.publisher.upsert_masternode_vote(VoteData(
                    proposal_hash=normalize_hash(proposal_hash),
                    pro_tx_hash=normalize_hash(vote.pro_tx_hash),
                    outcome=vote.outcome,
                    timestamp=vote.timestamp,
                    vote_signature=vote.vote_hash,
                ))
                if upsert.created:
                    result.created += 1
                elif upsert.updated:
                    result.updated += 1
            except Exception as e:
                log_with_context(
                    logger, logging.DEBUG, "Failed to sync vote",
                    proposal_hash=proposal_hash, pro_tx_hash=vote.pro_tx_hash, **error_context(e)
                )
                result.errors += 1
