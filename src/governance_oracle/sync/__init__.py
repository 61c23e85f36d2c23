"""Sync tasks reconciling one governance entity type per run."""

from .masternode_sync import MasternodeSync
from .proposal_sync import ProposalSync
from .vote_sync import VoteSync

__all__ = ['MasternodeSync', 'ProposalSync', 'VoteSync']
