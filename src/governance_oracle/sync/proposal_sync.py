"""Reconcile governance proposals from Dash Core into proposal documents."""

import json
import logging
import time
from typing import Any, Optional, Set

from ..clients.dash_core import DashCoreClient
from ..exceptions import ProposalParseError
from ..models import (
    GOBJECT_TYPE_PROPOSAL,
    GovernanceObject,
    ProposalData,
    ProposalDataString,
    SyncResult,
)
from ..publisher import PlatformPublisher
from ..utils.hash_utils import is_valid_hash256, normalize_hash, truncate_hash
from ..utils.logging import error_context, log_with_context
from .status_calculator import (
    block_height_to_epoch,
    calculate_funding_threshold,
    calculate_proposal_status,
)

logger = logging.getLogger(__name__)

DUFFS_PER_DASH = 100_000_000
MAX_NAME_LENGTH = 40
MAX_URL_LENGTH = 256
# Proposal collateral output value in DASH
COLLATERAL_AMOUNT = 5


def parse_proposal_data_string(data_string: str) -> ProposalDataString:
    """
    Parse a governance object's DataString.

    Accepts the flat JSON object and the legacy ``[["proposal", {...}]]`` form.

    Raises:
        ProposalParseError: If the payload is not JSON or lacks required fields
    """
    try:
        payload: Any = json.loads(data_string)
    except (TypeError, ValueError) as e:
        raise ProposalParseError(f"DataString is not valid JSON: {e}") from e

    if isinstance(payload, list) and payload and isinstance(payload[0], list) and len(payload[0]) == 2:
        payload = payload[0][1]

    if not isinstance(payload, dict):
        raise ProposalParseError("DataString is not a JSON object")

    if not payload.get('name') or not payload.get('url') or not payload.get('payment_address'):
        raise ProposalParseError("Proposal missing required fields")

    try:
        return ProposalDataString(
            name=str(payload['name']),
            url=str(payload['url']),
            payment_address=str(payload['payment_address']),
            payment_amount=float(payload.get('payment_amount', 0)),
            start_epoch=int(payload.get('start_epoch', 0)),
            end_epoch=int(payload.get('end_epoch', 0)),
            type=int(payload.get('type', GOBJECT_TYPE_PROPOSAL)),
        )
    except (TypeError, ValueError) as e:
        raise ProposalParseError(f"Proposal field has the wrong type: {e}") from e


class ProposalSync:
    """Mirrors every proposal governance object into a proposal document."""

    def __init__(self, dash_core: DashCoreClient, publisher: PlatformPublisher):
        self.dash_core = dash_core
        self.publisher = publisher

    async def sync(self) -> SyncResult:
        """
        Run one proposal reconciliation pass.

        Proposals that fail to parse or write are counted in ``errors`` and the
        pass continues. Stored proposals the node no longer lists are deleted.

        Returns:
            SyncResult with created, updated, deleted and error counts

        Raises:
            RpcError, RpcTransportError: If the governance object listing or
                chain state cannot be fetched
        """
        start_time = time.monotonic()
        result = SyncResult()

        logger.info("Starting proposal sync")

        # Listing failures abort the cycle and surface to the scheduler
        gobjects = await self.dash_core.get_governance_objects()
        proposals = [g for g in gobjects.values() if g.object_type == GOBJECT_TYPE_PROPOSAL]
        log_with_context(logger, logging.INFO, "Found proposals", count=len(proposals), objects=len(gobjects))

        mn_count = await self.dash_core.get_masternode_count()
        block_height = await self.dash_core.get_block_count()
        current_epoch = block_height_to_epoch(block_height)
        log_with_context(
            logger, logging.DEBUG, "Current chain state",
            block_height=block_height, current_epoch=current_epoch,
            enabled_masternodes=mn_count.enabled
        )

        upstream_hashes: Set[str] = set()

        for gobject in proposals:
            if not is_valid_hash256(gobject.hash):
                log_with_context(
                    logger, logging.ERROR, "Skipping governance object with malformed hash", hash=gobject.hash
                )
                result.errors += 1
                continue

            upstream_hashes.add(normalize_hash(gobject.hash))
            try:
                proposal = await self.transform_proposal(gobject, mn_count.enabled, current_epoch)
                upsert = await self.publisher.upsert_proposal(proposal)
                if upsert.created:
                    result.created += 1
                elif upsert.updated:
                    result.updated += 1
            except Exception as e:
                log_with_context(
                    logger, logging.ERROR, f"Failed to sync proposal {truncate_hash(gobject.hash)}", **error_context(e)
                )
                result.errors += 1

        await self._delete_stale_proposals(upstream_hashes, result)

        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        log_with_context(logger, logging.INFO, "Proposal sync completed", **result.to_dict())
        return result

    async def _delete_stale_proposals(self, upstream_hashes: Set[str], result: SyncResult) -> None:
        """Delete stored proposals the node no longer lists."""
        stored = await self.publisher.get_all_proposals()

        for doc in stored:
            if not doc.proposal_hash or doc.proposal_hash in upstream_hashes:
                continue
            try:
                if await self.publisher.delete_proposal(doc.proposal_hash):
                    result.deleted += 1
                    log_with_context(
                        logger, logging.INFO, "Deleted stale proposal", hash=truncate_hash(doc.proposal_hash)
                    )
            except Exception as e:
                log_with_context(
                    logger, logging.ERROR, f"Failed to delete proposal {truncate_hash(doc.proposal_hash)}", **error_context(e)
                )
                result.errors += 1

    async def transform_proposal(
        self,
        gobject: GovernanceObject,
        enabled_masternodes: int,
        current_epoch: int
    ) -> ProposalData:
        """
        Derive the proposal document contents from a governance object.

        Raises:
            ProposalParseError: If the DataString is unusable
        """
        data = parse_proposal_data_string(gobject.data_string)
        funding = gobject.funding

        funding_threshold = calculate_funding_threshold(enabled_masternodes)
        status = calculate_proposal_status(
            data.end_epoch,
            current_epoch,
            funding.yes_count,
            funding.no_count,
            funding_threshold,
            gobject.is_funded
        )

        collateral_hash = normalize_hash(gobject.collateral_hash) if gobject.collateral_hash else None
        collateral_pub_key = None
        if collateral_hash:
            collateral_pub_key = await self.extract_collateral_pub_key(collateral_hash)

        return ProposalData(
            proposal_hash=normalize_hash(gobject.hash),
            gobject_type=gobject.object_type,
            name=data.name[:MAX_NAME_LENGTH],
            url=data.url[:MAX_URL_LENGTH],
            payment_address=data.payment_address,
            payment_amount=round(data.payment_amount * DUFFS_PER_DASH),
            start_epoch=data.start_epoch,
            end_epoch=data.end_epoch,
            status=status,
            yes_count=funding.yes_count,
            no_count=funding.no_count,
            abstain_count=funding.abstain_count,
            total_masternodes=enabled_masternodes,
            funding_threshold=funding_threshold,
            last_updated_at=int(time.time() * 1000),
            created_at_block_height=gobject.creation_time,
            collateral_hash=collateral_hash,
            collateral_pub_key=collateral_pub_key,
        )

    async def extract_collateral_pub_key(self, collateral_hash: str) -> Optional[str]:
        """
        Find the proposal author's key in the collateral transaction.

        Returns the raw pubkey for a P2PK collateral output, the address for
        P2PKH, or None when neither can be determined.
        """
        try:
            tx = await self.dash_core.get_raw_transaction(collateral_hash, True)
        except Exception as e:
            log_with_context(
                logger, logging.DEBUG, "Failed to fetch collateral tx", hash=collateral_hash, **error_context(e)
            )
            return None

        for vout in tx.vout:
            if vout.value != COLLATERAL_AMOUNT:
                continue

            asm = vout.script_asm
            if asm and 'OP_DUP' not in asm and 'OP_CHECKSIG' in asm:
                pubkey = asm.split(' ')[0]
                if len(pubkey) in (66, 130):
                    return pubkey

            if vout.addresses:
                return vout.addresses[0]

        log_with_context(logger, logging.DEBUG, "No collateral output in tx", hash=collateral_hash)
        return None
