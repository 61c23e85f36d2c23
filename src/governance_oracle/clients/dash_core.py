"""Dash Core JSON-RPC client for governance and masternode state."""

import asyncio
import aiohttp
import base64
import logging
import re
import time
from typing import Any, Dict, List, Optional

from ..config.settings import DashCoreConfig
from ..exceptions import RpcError, RpcTransportError
from ..models import (
    ChainInfo,
    GovernanceObject,
    MasternodeCount,
    MasternodeListEntry,
    RawTransaction,
    VoteOutcome,
    VoteRecord,
)
from ..utils.logging import log_with_context
from ..utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

# Vote keys look like "CTxIn(COutPoint(<proTxHash>, 0), scriptSig=)"
_VOTE_KEY_RE = re.compile(r'COutPoint\(([a-f0-9]{64})', re.IGNORECASE)


def parse_vote_key(key: str) -> Optional[str]:
    """Extract the voter's proTxHash from a vote key, or None."""
    match = _VOTE_KEY_RE.search(key)
    return match.group(1).lower() if match else None


def normalize_vote_outcome(value: str) -> VoteOutcome:
    outcome = value.strip().lower()
    if outcome in ('yes', 'funding-yes'):
        return VoteOutcome.YES
    if outcome in ('no', 'funding-no'):
        return VoteOutcome.NO
    return VoteOutcome.ABSTAIN


def parse_vote_value(value: str) -> Optional[Dict[str, Any]]:
    """
    Parse "timestamp:outcome[:voteHash]".

    Returns None when the value has fewer than two parts or a non-numeric
    timestamp.
    """
    parts = value.split(':')
    if len(parts) < 2:
        return None

    try:
        timestamp = int(parts[0])
    except ValueError:
        return None

    return {
        'timestamp': timestamp,
        'outcome': normalize_vote_outcome(parts[1]),
        'vote_hash': parts[2] if len(parts) > 2 and parts[2] else None,
    }


def parse_votes(result: Dict[str, str]) -> List[VoteRecord]:
    """Turn a `gobject getcurrentvotes` map into vote records, skipping bad entries."""
    votes = []

    for key, value in result.items():
        pro_tx_hash = parse_vote_key(key)
        if not pro_tx_hash:
            log_with_context(logger, logging.WARNING, "Could not parse vote key", key=key)
            continue

        parsed = parse_vote_value(value) if isinstance(value, str) else None
        if not parsed:
            log_with_context(logger, logging.WARNING, "Could not parse vote value", value=value)
            continue

        votes.append(VoteRecord(
            pro_tx_hash=pro_tx_hash,
            outcome=parsed['outcome'],
            timestamp=parsed['timestamp'],
            vote_hash=parsed['vote_hash'],
        ))

    return votes


class DashCoreClient:
    """
    Dash Core RPC client.

    Every public method issues exactly one JSON-RPC 1.0 call, bounded by the
    configured timeout and wrapped in the retry policy. The only state held is
    the HTTP session and immutable configuration.
    """

    def __init__(self, config: DashCoreConfig, retry_policy: RetryPolicy):
        self.config = config
        self.retry_policy = retry_policy
        self.session: Optional[aiohttp.ClientSession] = None
        credentials = f"{config.username}:{config.password}".encode("utf-8")
        self._headers = {"Authorization": "Basic " + base64.b64encode(credentials).decode("ascii")}

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout / 1000.0)
            )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make one RPC call.

        Args:
            method: RPC method name
            params: Positional RPC parameters

        Returns:
            The `result` member of the JSON-RPC response

        Raises:
            RpcError: If the node answers with a JSON-RPC error object
            RpcTransportError: On timeout, connection failure, or a non-JSON HTTP error
            RuntimeError: If the session has not been started
        """
        if not self.session:
            raise RuntimeError("Client not initialized. Call start() or use async context manager.")

        payload = {
            'jsonrpc': '1.0',
            'id': str(int(time.time() * 1000)),
            'method': method,
            'params': params or [],
        }

        try:
            async with self.session.post(self.config.url, json=payload, headers=self._headers) as response:
                # Dash Core reports RPC errors with HTTP 500 and a JSON body
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None

                if isinstance(data, dict) and data.get('error'):
                    error = data['error']
                    raise RpcError(method, int(error.get('code', -1)), str(error.get('message', '')))

                if response.status >= 400 or not isinstance(data, dict):
                    raise RpcTransportError(
                        method, f"HTTP error: {response.status} {response.reason}", status=response.status
                    )

                return data.get('result')

        except asyncio.TimeoutError as e:
            raise RpcTransportError(method, f"timed out after {self.config.timeout}ms") from e
        except aiohttp.ClientError as e:
            raise RpcTransportError(method, str(e)) from e

    async def _rpc_with_retry(self, method: str, params: Optional[List[Any]] = None) -> Any:
        def on_retry(attempt: int, error: Exception):
            log_with_context(
                logger, logging.WARNING, f"RPC call {method} failed",
                attempt=attempt, error=str(error)
            )

        return await retry_async(lambda: self._rpc(method, params), self.retry_policy, on_retry=on_retry)

    async def test_connection(self) -> bool:
        """Single getblockcount without retry."""
        try:
            await self._rpc('getblockcount')
            return True
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return False

    async def get_block_count(self) -> int:
        return int(await self._rpc_with_retry('getblockcount'))

    async def get_block_hash(self, height: int) -> str:
        return await self._rpc_with_retry('getblockhash', [height])

    async def get_superblock_budget(self, height: int) -> float:
        return float(await self._rpc_with_retry('getsuperblockbudget', [height]))

    async def get_governance_objects(self) -> Dict[str, GovernanceObject]:
        """
        All governance objects keyed by hash, in node order.

        Returns:
            Mapping of object hash to GovernanceObject, triggers included

        Raises:
            RpcError, RpcTransportError: Once the retry policy is exhausted
        """
        result = await self._rpc_with_retry('gobject', ['list', 'all']) or {}
        objects = {
            hash_key: GovernanceObject.from_rpc(raw, hash_key)
            for hash_key, raw in result.items()
        }
        logger.debug(f"Retrieved {len(objects)} governance objects")
        return objects

    async def get_governance_object(self, object_hash: str) -> GovernanceObject:
        result = await self._rpc_with_retry('gobject', ['get', object_hash])
        return GovernanceObject.from_rpc(result, object_hash)

    async def get_governance_votes(self, object_hash: str) -> List[VoteRecord]:
        """
        Current votes for one governance object.

        Entries whose key or value cannot be parsed are dropped.

        Args:
            object_hash: Governance object hash

        Returns:
            Parsed VoteRecord list, one per masternode
        """
        result = await self._rpc_with_retry('gobject', ['getcurrentvotes', object_hash]) or {}
        return parse_votes(result)

    async def get_masternode_list(self) -> Dict[str, MasternodeListEntry]:
        """Full masternode list keyed by lower-cased proTxHash."""
        result = await self._rpc_with_retry('masternode', ['list', 'json']) or {}
        entries = {}
        for pro_tx_hash, raw in result.items():
            entry = MasternodeListEntry.from_rpc(raw.get('proTxHash') or pro_tx_hash, raw)
            entries[entry.pro_tx_hash] = entry
        logger.debug(f"Retrieved {len(entries)} masternodes")
        return entries

    async def get_masternode_count(self) -> MasternodeCount:
        result = await self._rpc_with_retry('masternode', ['count'])
        return MasternodeCount(total=int(result['total']), enabled=int(result['enabled']))

    async def get_raw_transaction(self, txid: str, verbose: bool = True) -> RawTransaction:
        result = await self._rpc_with_retry('getrawtransaction', [txid, 1 if verbose else 0])
        return RawTransaction.from_rpc(result)

    async def get_blockchain_info(self) -> ChainInfo:
        result = await self._rpc_with_retry('getblockchaininfo')
        return ChainInfo(
            chain=result.get('chain', ''),
            blocks=int(result.get('blocks', 0)),
            headers=int(result.get('headers', 0)),
            verification_progress=float(result.get('verificationprogress', 0.0)),
        )
