"""Idempotent publishing of governance state into the document store."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .clients.platform_store import DocumentStore, OrderBy, PlatformDocument, WhereClause
from .config.settings import PlatformConfig
from .exceptions import StoreError, StoreNotInitializedError
from .models import (
    MasternodeData,
    ProposalData,
    ProposalStatus,
    UpsertResult,
    VoteData,
    VoteOutcome,
)
from .utils.hash_utils import bytes_to_hex, hex_to_bytes, normalize_hash
from .utils.logging import log_with_context
from .utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

PROPOSAL = 'proposal'
MASTERNODE_RECORD = 'masternodeRecord'
MASTERNODE_VOTE = 'masternodeVote'

# Largest page the store returns for one query
QUERY_PAGE_SIZE = 100


def _hex_field(value: Any) -> Optional[str]:
    """Hash fields come back as byte arrays, bytes or hex strings."""
    if value is None:
        return None
    if isinstance(value, str):
        return normalize_hash(value)
    return bytes_to_hex(value)


@dataclass
class ProposalDocument:
    id: str
    revision: Optional[int]
    proposal_hash: str
    name: str
    url: str
    status: ProposalStatus
    start_epoch: int
    end_epoch: int
    yes_count: int
    no_count: int
    abstain_count: int
    total_masternodes: int
    funding_threshold: int
    last_updated_at: int


@dataclass
class MasternodeRecordDocument:
    id: str
    revision: Optional[int]
    pro_tx_hash: str
    voting_key_hash: Optional[str]
    is_enabled: bool
    last_updated_at: int


@dataclass
class MasternodeVoteDocument:
    id: str
    revision: Optional[int]
    proposal_hash: str
    pro_tx_hash: str
    outcome: VoteOutcome
    timestamp: int


def decode_proposal(doc: PlatformDocument) -> ProposalDocument:
    data = doc.data
    return ProposalDocument(
        id=doc.id,
        revision=doc.revision,
        proposal_hash=_hex_field(data.get('proposalHash')) or '',
        name=data.get('name', ''),
        url=data.get('url', ''),
        status=ProposalStatus(data.get('status', ProposalStatus.ACTIVE.value)),
        start_epoch=int(data.get('startEpoch', 0)),
        end_epoch=int(data.get('endEpoch', 0)),
        yes_count=int(data.get('yesCount', 0)),
        no_count=int(data.get('noCount', 0)),
        abstain_count=int(data.get('abstainCount', 0)),
        total_masternodes=int(data.get('totalMasternodes', 0)),
        funding_threshold=int(data.get('fundingThreshold', 0)),
        last_updated_at=int(data.get('lastUpdatedAt', 0)),
    )


def decode_masternode_record(doc: PlatformDocument) -> MasternodeRecordDocument:
    data = doc.data
    return MasternodeRecordDocument(
        id=doc.id,
        revision=doc.revision,
        pro_tx_hash=_hex_field(data.get('proTxHash')) or '',
        voting_key_hash=_hex_field(data.get('votingKeyHash')),
        is_enabled=bool(data.get('isEnabled', False)),
        last_updated_at=int(data.get('lastUpdatedAt', 0)),
    )


def decode_masternode_vote(doc: PlatformDocument) -> MasternodeVoteDocument:
    data = doc.data
    return MasternodeVoteDocument(
        id=doc.id,
        revision=doc.revision,
        proposal_hash=_hex_field(data.get('proposalHash')) or '',
        pro_tx_hash=_hex_field(data.get('proTxHash')) or '',
        outcome=VoteOutcome(data.get('outcome', VoteOutcome.ABSTAIN.value)),
        timestamp=int(data.get('timestamp', 0)),
    )


def encode_proposal(proposal: ProposalData) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'proposalHash': hex_to_bytes(proposal.proposal_hash),
        'gobjectType': proposal.gobject_type,
        'name': proposal.name,
        'url': proposal.url,
        'paymentAddress': proposal.payment_address,
        'paymentAmount': proposal.payment_amount,
        'startEpoch': proposal.start_epoch,
        'endEpoch': proposal.end_epoch,
        'status': proposal.status.value,
        'yesCount': proposal.yes_count,
        'noCount': proposal.no_count,
        'abstainCount': proposal.abstain_count,
        'totalMasternodes': proposal.total_masternodes,
        'fundingThreshold': proposal.funding_threshold,
        'lastUpdatedAt': proposal.last_updated_at,
    }
    if proposal.created_at_block_height is not None:
        data['createdAtBlockHeight'] = proposal.created_at_block_height
    if proposal.collateral_hash:
        data['collateralHash'] = proposal.collateral_hash
    if proposal.collateral_pub_key:
        data['collateralPubKey'] = proposal.collateral_pub_key
    return data


def encode_masternode_record(mn: MasternodeData) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'proTxHash': hex_to_bytes(mn.pro_tx_hash),
        'votingKeyHash': hex_to_bytes(mn.voting_key_hash),
        'isEnabled': mn.is_enabled,
        'lastUpdatedAt': mn.last_updated_at,
    }
    if mn.owner_key_hash:
        data['ownerKeyHash'] = hex_to_bytes(mn.owner_key_hash)
    if mn.payout_address:
        data['payoutAddress'] = mn.payout_address
    return data


def encode_masternode_vote(vote: VoteData) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'proposalHash': hex_to_bytes(vote.proposal_hash),
        'proTxHash': hex_to_bytes(vote.pro_tx_hash),
        'outcome': vote.outcome.value,
        'timestamp': vote.timestamp,
    }
    if vote.vote_signature:
        data['voteSignature'] = vote.vote_signature
    return data


def has_proposal_changed(existing: ProposalDocument, proposal: ProposalData) -> bool:
    """Only vote-driven fields are monitored; name and url are immutable once created."""
    return (
        existing.status != proposal.status
        or existing.yes_count != proposal.yes_count
        or existing.no_count != proposal.no_count
        or existing.abstain_count != proposal.abstain_count
        or existing.total_masternodes != proposal.total_masternodes
        or existing.funding_threshold != proposal.funding_threshold
    )


class PlatformPublisher:
    """Writes governance documents under one service identity."""

    def __init__(self, store: DocumentStore, config: PlatformConfig, retry_policy: RetryPolicy):
        self.store = store
        self.config = config
        self.retry_policy = retry_policy
        self._initialized = False

    async def initialize(self) -> None:
        """Open the store and load the governance contract."""
        if self._initialized:
            return

        log_with_context(
            logger, logging.INFO, "Initializing document store",
            network=self.config.network, contract_id=self.config.contract_id
        )
        await self.store.connect()

        try:
            await self.store.fetch_contract(self.config.contract_id)
        except Exception as e:
            logger.error(f"Failed to fetch governance contract: {e}")
            raise StoreError(f"Failed to fetch governance contract: {self.config.contract_id}") from e

        self._initialized = True
        logger.info("Governance contract cached, publisher ready")

    async def disconnect(self) -> None:
        self._initialized = False
        await self.store.close()

    async def is_connected(self) -> bool:
        if not self._initialized:
            return False
        return await self.store.ping()

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise StoreNotInitializedError("Platform publisher not initialized. Call initialize() first.")

    def _on_retry(self, operation: str):
        def _log(attempt: int, error: Exception):
            log_with_context(logger, logging.WARNING, f"{operation} failed", attempt=attempt, error=str(error))
        return _log

    async def query_documents(
        self,
        document_type: str,
        where: Sequence[WhereClause],
        limit: Optional[int] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        start_after: Optional[str] = None
    ) -> List[PlatformDocument]:
        self._ensure_initialized()
        return await retry_async(
            lambda: self.store.query(document_type, where, limit=limit, order_by=order_by, start_after=start_after),
            self.retry_policy,
            on_retry=self._on_retry(f"Query {document_type}")
        )

    async def query_all_documents(
        self,
        document_type: str,
        where: Sequence[WhereClause],
        order_by: Optional[Sequence[OrderBy]] = None
    ) -> List[PlatformDocument]:
        """
        Fetch every matching document.

        Follows start_after pagination until a page shorter than
        QUERY_PAGE_SIZE is returned.

        Args:
            document_type: Contract document type
            where: Where clauses, all of which must hold
            order_by: Sort order matching one of the contract indices

        Returns:
            All matching documents, in query order

        Raises:
            StoreNotInitializedError: If initialize() has not completed
            StoreError: If a page query still fails after retries
        """
        documents: List[PlatformDocument] = []
        start_after = None

        while True:
            page = await self.query_documents(
                document_type, where, limit=QUERY_PAGE_SIZE, order_by=order_by, start_after=start_after
            )
            documents.extend(page)
            if len(page) < QUERY_PAGE_SIZE:
                return documents
            start_after = page[-1].id

    async def _create_document(self, document_type: str, data: Dict[str, Any]) -> str:
        self._ensure_initialized()
        document_id = await retry_async(
            lambda: self.store.create(document_type, data),
            self.retry_policy,
            on_retry=self._on_retry(f"Create {document_type}")
        )
        logger.debug(f"Created {document_type} document: {document_id}")
        return document_id

    async def _update_document(self, document_type: str, document_id: str, data: Dict[str, Any], revision: int) -> None:
        self._ensure_initialized()
        await retry_async(
            lambda: self.store.replace(document_type, document_id, data, revision),
            self.retry_policy,
            on_retry=self._on_retry(f"Replace {document_type}")
        )
        logger.debug(f"Updated {document_type} document: {document_id}")

    async def _delete_document(self, document_type: str, document_id: str) -> None:
        self._ensure_initialized()
        await retry_async(
            lambda: self.store.delete(document_type, document_id),
            self.retry_policy,
            on_retry=self._on_retry(f"Delete {document_type}")
        )
        logger.debug(f"Deleted {document_type} document: {document_id}")

    # Proposals

    async def find_proposal_by_hash(self, proposal_hash: str) -> Optional[ProposalDocument]:
        documents = await self.query_documents(
            PROPOSAL, [('proposalHash', '==', hex_to_bytes(proposal_hash))], limit=1
        )
        return decode_proposal(documents[0]) if documents else None

    async def get_all_proposals(self) -> List[ProposalDocument]:
        documents = await self.query_all_documents(
            PROPOSAL, [('$createdAt', '>', 0)], order_by=[('$createdAt', 'asc')]
        )
        return [decode_proposal(doc) for doc in documents]

    async def get_proposals_by_status(self, status: ProposalStatus) -> List[ProposalDocument]:
        # The endEpoch range clause only exists to match the (status, endEpoch) index
        documents = await self.query_all_documents(
            PROPOSAL,
            [('status', '==', status.value), ('endEpoch', '>', 0)],
            order_by=[('status', 'asc'), ('endEpoch', 'asc')]
        )
        return [decode_proposal(doc) for doc in documents]

    async def upsert_proposal(self, proposal: ProposalData) -> UpsertResult:
        """
        Create the proposal document, or replace it when a vote-driven field changed.

        Args:
            proposal: Derived proposal data

        Returns:
            UpsertResult with created or updated set, or neither when unchanged

        Raises:
            StoreError: If the lookup or the write fails after retries
        """
        existing = await self.find_proposal_by_hash(proposal.proposal_hash)
        data = encode_proposal(proposal)

        if existing is None:
            log_with_context(
                logger, logging.INFO, "Creating new proposal",
                hash=proposal.proposal_hash, name=proposal.name
            )
            await self._create_document(PROPOSAL, data)
            return UpsertResult(created=True)

        if not has_proposal_changed(existing, proposal):
            log_with_context(logger, logging.DEBUG, "Proposal unchanged, skipping", hash=proposal.proposal_hash)
            return UpsertResult()

        log_with_context(
            logger, logging.DEBUG, "Updating proposal",
            hash=proposal.proposal_hash, status=proposal.status.value
        )
        await self._update_document(PROPOSAL, existing.id, data, existing.revision or 1)
        return UpsertResult(updated=True)

    async def delete_proposal(self, proposal_hash: str) -> bool:
        """Delete the proposal document. Returns False when none was stored."""
        existing = await self.find_proposal_by_hash(proposal_hash)
        if existing is None:
            return False

        log_with_context(logger, logging.INFO, "Deleting proposal", hash=proposal_hash)
        await self._delete_document(PROPOSAL, existing.id)
        return True

    # Masternode records

    async def find_masternode_by_pro_tx_hash(self, pro_tx_hash: str) -> Optional[MasternodeRecordDocument]:
        documents = await self.query_documents(
            MASTERNODE_RECORD, [('proTxHash', '==', hex_to_bytes(pro_tx_hash))], limit=1
        )
        return decode_masternode_record(documents[0]) if documents else None

    async def upsert_masternode_record(self, mn: MasternodeData) -> UpsertResult:
        """
        Create the masternode record, or replace it when its enabled flag flipped.

        Returns:
            UpsertResult describing the write, if any

        Raises:
            StoreError: If the lookup or the write fails after retries
        """
        existing = await self.find_masternode_by_pro_tx_hash(mn.pro_tx_hash)
        data = encode_masternode_record(mn)

        if existing is None:
            log_with_context(logger, logging.DEBUG, "Creating new masternode record", pro_tx_hash=mn.pro_tx_hash)
            await self._create_document(MASTERNODE_RECORD, data)
            return UpsertResult(created=True)

        if existing.is_enabled == mn.is_enabled:
            return UpsertResult()

        log_with_context(
            logger, logging.DEBUG, "Updating masternode record",
            pro_tx_hash=mn.pro_tx_hash, is_enabled=mn.is_enabled
        )
        await self._update_document(MASTERNODE_RECORD, existing.id, data, existing.revision or 1)
        return UpsertResult(updated=True)

    # Votes

    async def find_vote(self, proposal_hash: str, pro_tx_hash: str) -> Optional[MasternodeVoteDocument]:
        documents = await self.query_documents(
            MASTERNODE_VOTE,
            [
                ('proposalHash', '==', hex_to_bytes(proposal_hash)),
                ('proTxHash', '==', hex_to_bytes(pro_tx_hash)),
            ],
            limit=1
        )
        return decode_masternode_vote(documents[0]) if documents else None

    async def upsert_masternode_vote(self, vote: VoteData) -> UpsertResult:
        """
        Create the vote document, or replace it when outcome or timestamp changed.

        Votes are keyed by (proposalHash, proTxHash), so a masternode that
        changes its vote updates its one document.

        Returns:
            UpsertResult describing the write, if any

        Raises:
            StoreError: If the lookup or the write fails after retries
        """
        existing = await self.find_vote(vote.proposal_hash, vote.pro_tx_hash)
        data = encode_masternode_vote(vote)

        if existing is None:
            log_with_context(
                logger, logging.DEBUG, "Creating new vote",
                proposal_hash=vote.proposal_hash, pro_tx_hash=vote.pro_tx_hash
            )
            await self._create_document(MASTERNODE_VOTE, data)
            return UpsertResult(created=True)

        if existing.outcome == vote.outcome and existing.timestamp == vote.timestamp:
            return UpsertResult()

        log_with_context(
            logger, logging.DEBUG, "Updating vote",
            proposal_hash=vote.proposal_hash, pro_tx_hash=vote.pro_tx_hash
        )
        await self._update_document(MASTERNODE_VOTE, existing.id, data, existing.revision or 1)
        return UpsertResult(updated=True)

    async def get_votes_for_proposal(self, proposal_hash: str) -> List[MasternodeVoteDocument]:
        # outcome range clause keeps the query on the (proposalHash, outcome, timestamp) index
        documents = await self.query_all_documents(
            MASTERNODE_VOTE,
            [('proposalHash', '==', hex_to_bytes(proposal_hash)), ('outcome', '>', '')],
            order_by=[('proposalHash', 'asc'), ('outcome', 'asc'), ('timestamp', 'asc')]
        )
        return [decode_masternode_vote(doc) for doc in documents]
