"""Epoch arithmetic and proposal status derivation. Pure functions, no I/O."""

from ..models import ProposalStatus

# Mainnet superblock spacing in blocks
SUPERBLOCK_INTERVAL = 16616

# Height of the first mainnet superblock
FIRST_SUPERBLOCK_HEIGHT = 212064

# Net yes votes needed: one in ten enabled masternodes, rounded up
FUNDING_THRESHOLD_DIVISOR = 10


def block_height_to_epoch(block_height: int) -> int:
    if block_height < FIRST_SUPERBLOCK_HEIGHT:
        return 0
    return (block_height - FIRST_SUPERBLOCK_HEIGHT) // SUPERBLOCK_INTERVAL


def epoch_to_block_height(epoch: int) -> int:
    """First block height of an epoch."""
    return FIRST_SUPERBLOCK_HEIGHT + epoch * SUPERBLOCK_INTERVAL


def get_next_superblock_height(block_height: int) -> int:
    return epoch_to_block_height(block_height_to_epoch(block_height) + 1)


def calculate_proposal_status(
    end_epoch: int,
    current_epoch: int,
    yes_count: int,
    no_count: int,
    funding_threshold: int,
    is_funded: bool
) -> ProposalStatus:
    """
    Derive a proposal's status.

    Rules, first match wins:
    1. funded by the node -> funded
    2. voting window closed (end_epoch < current_epoch) -> passed if the net
       vote meets the threshold, otherwise expired
    3. voting still open -> passed if the threshold is already met, otherwise
       active

    Rule 3 reports passed before the deadline once enough votes are in.
    """
    has_passed_threshold = calculate_net_votes(yes_count, no_count) >= funding_threshold

    if is_funded:
        return ProposalStatus.FUNDED

    if end_epoch < current_epoch:
        return ProposalStatus.PASSED if has_passed_threshold else ProposalStatus.EXPIRED

    if has_passed_threshold:
        return ProposalStatus.PASSED

    return ProposalStatus.ACTIVE


def calculate_funding_threshold(enabled_masternodes: int) -> int:
    # Integer ceiling; 30 * 0.1 in floating point is slightly above 3
    return -(-enabled_masternodes // FUNDING_THRESHOLD_DIVISOR)


def calculate_net_votes(yes_count: int, no_count: int) -> int:
    return yes_count - no_count


def calculate_votes_needed(yes_count: int, no_count: int, funding_threshold: int) -> int:
    return max(0, funding_threshold - calculate_net_votes(yes_count, no_count))


def calculate_vote_progress(yes_count: int, no_count: int, funding_threshold: int) -> float:
    """Percentage of the threshold reached, clamped to [0, 100]."""
    if funding_threshold == 0:
        return 100.0
    progress = calculate_net_votes(yes_count, no_count) / funding_threshold * 100
    return min(100.0, max(0.0, progress))
