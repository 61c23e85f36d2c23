"""Reconcile the masternode list into masternode records."""

import hashlib
import logging
import time

from ..clients.dash_core import DashCoreClient
from ..models import MasternodeData, MasternodeListEntry, SyncResult
from ..publisher import PlatformPublisher
from ..utils.hash_utils import address_to_hash160
from ..utils.logging import error_context, log_with_context

logger = logging.getLogger(__name__)

ENABLED_STATUS = 'ENABLED'


def key_hash_from_address(address: str) -> str:
    """
    20-byte key hash for an address.

    Falls back to the first 20 bytes of SHA-256 when the string is not a
    base58check address.
    """
    try:
        return address_to_hash160(address)
    except ValueError:
        return hashlib.sha256(address.encode('utf-8')).digest()[:20].hex()


def to_masternode_data(entry: MasternodeListEntry) -> MasternodeData:
    voting_source = entry.voting_address or entry.pro_tx_hash
    return MasternodeData(
        pro_tx_hash=entry.pro_tx_hash,
        voting_key_hash=key_hash_from_address(voting_source),
        owner_key_hash=key_hash_from_address(entry.owner_address) if entry.owner_address else None,
        payout_address=entry.payee or None,
        is_enabled=entry.status == ENABLED_STATUS,
        last_updated_at=int(time.time() * 1000),
    )


class MasternodeSync:
    """Mirrors the masternode list, tracking each node's enabled flag."""

    def __init__(self, dash_core: DashCoreClient, publisher: PlatformPublisher):
        self.dash_core = dash_core
        self.publisher = publisher

    async def sync(self) -> SyncResult:
        """
        Run one masternode reconciliation pass.

        Raises:
            RpcError, RpcTransportError: If the masternode list cannot be fetched
        """
        start_time = time.monotonic()
        result = SyncResult()

        logger.info("Starting masternode sync")

        masternodes = await self.dash_core.get_masternode_list()
        log_with_context(logger, logging.INFO, "Fetched masternode list", count=len(masternodes))

        for processed, (pro_tx_hash, entry) in enumerate(masternodes.items(), start=1):
            try:
                upsert = await self.publisher.upsert_masternode_record(to_masternode_data(entry))
                if upsert.created:
                    result.created += 1
                elif upsert.updated:
                    result.updated += 1
            except Exception as e:
                log_with_context(
                    logger, logging.DEBUG, "Failed to sync masternode",
                    pro_tx_hash=pro_tx_hash, **error_context(e)
                )
                result.errors += 1

            if processed % 500 == 0:
                logger.info(f"Processed {processed}/{len(masternodes)} masternodes")

        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        log_with_context(
            logger, logging.INFO, "Masternode sync completed",
            total_masternodes=len(masternodes), **result.to_dict()
        )
        return result
