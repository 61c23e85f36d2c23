"""Pytest configuration and shared fixtures."""

import json
import time
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from governance_oracle.clients.dash_core import DashCoreClient
from governance_oracle.clients.platform_store import DocumentStore, OrderBy, PlatformDocument, WhereClause
from governance_oracle.config.settings import (
    DashCoreConfig,
    HealthConfig,
    LoggingConfig,
    OracleSettings,
    PlatformConfig,
    SyncConfig,
)
from governance_oracle.exceptions import StoreError
from governance_oracle.models import GovernanceObject, MasternodeCount, RawTransaction
from governance_oracle.publisher import PlatformPublisher
from governance_oracle.utils.retry import RetryPolicy, fixed_delay

PROPOSAL_HASH_A = 'a' * 64
PROPOSAL_HASH_B = 'b' * 64
PRO_TX_HASH_1 = '1' * 64
PRO_TX_HASH_2 = '2' * 64

# Inside the first epoch after the first superblock
BLOCK_HEIGHT = 212064 + 16616 * 100 + 5
CURRENT_EPOCH = 100

TEST_PRIVATE_KEY = '11' * 32


class InMemoryDocumentStore(DocumentStore):
    """
    Document store fake keeping documents in insertion order.

    Supports the `==` and `>` where operators the publisher uses, limit and
    start_after pagination, and optimistic revisions on replace.
    """

    def __init__(self):
        self.documents: Dict[str, Dict[str, PlatformDocument]] = {}
        self.connected = False
        self.closed = False
        self.fail_contract = False
        self.writes: List[tuple] = []
        self._next_id = 1

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self.closed = True

    async def fetch_contract(self, contract_id: str) -> Dict[str, Any]:
        if self.fail_contract:
            raise StoreError(f"Contract not found: {contract_id}", status=404)
        return {'id': contract_id}

    async def ping(self) -> bool:
        return self.connected

    @staticmethod
    def _field(doc: PlatformDocument, name: str) -> Any:
        system = {
            '$id': doc.id,
            '$ownerId': doc.owner_id,
            '$revision': doc.revision,
            '$createdAt': doc.created_at,
            '$updatedAt': doc.updated_at,
        }
        return system[name] if name in system else doc.data.get(name)

    def _matches(self, doc: PlatformDocument, where: Sequence[WhereClause]) -> bool:
        for name, op, expected in where:
            value = self._field(doc, name)
            if op == '==':
                if value != expected:
                    return False
            elif op == '>':
                if value is None or not value > expected:
                    return False
            else:
                raise ValueError(f"Unsupported operator: {op}")
        return True

    async def query(
        self,
        document_type: str,
        where: Sequence[WhereClause],
        limit: Optional[int] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        start_after: Optional[str] = None
    ) -> List[PlatformDocument]:
        docs = list(self.documents.get(document_type, {}).values())
        if start_after:
            ids = [doc.id for doc in docs]
            docs = docs[ids.index(start_after) + 1:]
        matched = [doc for doc in docs if self._matches(doc, where)]
        return matched[:limit] if limit else matched

    async def create(self, document_type: str, data: Dict[str, Any]) -> str:
        document_id = f"doc-{self._next_id}"
        self._next_id += 1
        now = int(time.time() * 1000)
        self.documents.setdefault(document_type, {})[document_id] = PlatformDocument(
            id=document_id, owner_id='test-identity', revision=1,
            created_at=now, updated_at=now, data=dict(data)
        )
        self.writes.append(('create', document_type, document_id))
        return document_id

    async def replace(self, document_type: str, document_id: str, data: Dict[str, Any], revision: int) -> None:
        doc = self.documents[document_type][document_id]
        if revision != doc.revision:
            raise StoreError(f"Revision conflict on {document_id}: {revision} != {doc.revision}")
        doc.data = dict(data)
        doc.revision += 1
        doc.updated_at = int(time.time() * 1000)
        self.writes.append(('replace', document_type, document_id))

    async def delete(self, document_type: str, document_id: str) -> None:
        del self.documents[document_type][document_id]
        self.writes.append(('delete', document_type, document_id))


def make_gobject(
    object_hash: str,
    name: str,
    end_epoch: int = CURRENT_EPOCH + 2,
    yes: int = 0,
    no: int = 0,
    abstain: int = 0,
    is_funded: bool = False,
    object_type: int = 1,
    data_string: Optional[str] = None,
) -> GovernanceObject:
    """Governance object as it comes out of `gobject list all`."""
    if data_string is None:
        data_string = json.dumps({
            'end_epoch': end_epoch,
            'name': name,
            'payment_address': 'yXyz1234567890abcdefghijkmnopqrstu',
            'payment_amount': 12.5,
            'start_epoch': CURRENT_EPOCH - 1,
            'type': 1,
            'url': f"https://example.org/{name}",
        })
    return GovernanceObject.from_rpc({
        'Hash': object_hash,
        'CollateralHash': 'C' * 64,
        'ObjectType': object_type,
        'CreationTime': 1700000000,
        'DataString': data_string,
        'FundingResult': {'AbsoluteYesCount': yes - no, 'YesCount': yes, 'NoCount': no, 'AbstainCount': abstain},
        'fCachedFunding': is_funded,
    })


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(retry_attempts=2, retry_delay_ms=0)


@pytest.fixture
def platform_config() -> PlatformConfig:
    return PlatformConfig(
        network='testnet',
        identity_id='test-identity',
        private_key=TEST_PRIVATE_KEY,
        contract_id='test-contract',
    )


@pytest.fixture
def test_settings(sync_config, platform_config) -> OracleSettings:
    return OracleSettings(
        service_name='test-oracle',
        dash_core=DashCoreConfig(username='user', password='pass'),
        platform=platform_config,
        sync=sync_config,
        health=HealthConfig(enabled=False),
        logging=LoggingConfig(level='debug'),
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(attempts=2, delay_strategy=fixed_delay(0))


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
async def publisher(store, platform_config, retry_policy) -> PlatformPublisher:
    publisher = PlatformPublisher(store, platform_config, retry_policy)
    await publisher.initialize()
    return publisher


@pytest.fixture
def mock_dash_core():
    """Node client returning an empty chain by default."""
    client = AsyncMock(spec=DashCoreClient)
    client.get_governance_objects.return_value = {}
    client.get_masternode_count.return_value = MasternodeCount(total=105, enabled=100)
    client.get_block_count.return_value = BLOCK_HEIGHT
    client.get_raw_transaction.return_value = RawTransaction(txid='c' * 64, vout=[])
    client.get_governance_votes.return_value = []
    client.get_masternode_list.return_value = {}
    client.test_connection.return_value = True
    return client


@pytest.fixture
def gobject_factory():
    return make_gobject
