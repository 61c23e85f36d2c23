"""Document store boundary: generic documents and the signed HTTP gateway store."""

import abc
import asyncio
import aiohttp
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..config.settings import PlatformConfig
from ..exceptions import StoreError

logger = logging.getLogger(__name__)

WhereClause = Tuple[str, str, Any]
OrderBy = Tuple[str, str]


@dataclass
class PlatformDocument:
    """A stored document: system `$` metadata plus type-specific fields."""
    id: str
    owner_id: str
    revision: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> 'PlatformDocument':
        return cls(
            id=raw['$id'],
            owner_id=raw.get('$ownerId', ''),
            revision=raw.get('$revision'),
            created_at=raw.get('$createdAt'),
            updated_at=raw.get('$updatedAt'),
            data={key: value for key, value in raw.items() if not key.startswith('$')},
        )


def to_wire(value: Any) -> Any:
    """Byte fields travel as arrays of integers."""
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    return value


class DocumentStore(abc.ABC):
    """Operations the publisher needs from the remote document store."""

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    @abc.abstractmethod
    async def fetch_contract(self, contract_id: str) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def ping(self) -> bool:
        ...

    @abc.abstractmethod
    async def query(
        self,
        document_type: str,
        where: Sequence[WhereClause],
        limit: Optional[int] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        start_after: Optional[str] = None
    ) -> List[PlatformDocument]:
        ...

    @abc.abstractmethod
    async def create(self, document_type: str, data: Dict[str, Any]) -> str:
        """Create a document and return its id."""

    @abc.abstractmethod
    async def replace(self, document_type: str, document_id: str, data: Dict[str, Any], revision: int) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, document_type: str, document_id: str) -> None:
        ...


class IdentitySigner:
    """Signs state transitions with the service identity's secp256k1 key."""

    def __init__(self, identity_id: str, private_key_hex: str):
        key_hex = private_key_hex[2:] if private_key_hex.startswith('0x') else private_key_hex
        if len(key_hex) != 64:
            raise ValueError("Identity private key must be 32 bytes of hex")

        self.identity_id = identity_id
        self._private_key = ec.derive_private_key(int(key_hex, 16), ec.SECP256K1())
        self.public_key_hex = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint
        ).hex()

    def sign(self, message: bytes) -> str:
        """DER-encoded ECDSA signature over SHA-256 of the message, as hex."""
        return self._private_key.sign(message, ec.ECDSA(hashes.SHA256())).hex()


def canonical_json(body: Dict[str, Any]) -> bytes:
    return json.dumps(to_wire(body), sort_keys=True, separators=(',', ':')).encode('utf-8')


def generate_entropy() -> str:
    """Fresh 32 bytes of entropy for one state transition."""
    return secrets.token_hex(32)


class PlatformGatewayStore(DocumentStore):
    """
    Document store reached through an HTTP gateway.

    Reads are plain JSON queries. Every write is a state transition owned by
    the configured identity, serialized canonically and signed before it is
    submitted.
    """

    def __init__(self, config: PlatformConfig):
        self.config = config
        self.signer = IdentitySigner(config.identity_id, config.private_key)
        self.session: Optional[aiohttp.ClientSession] = None
        self.base_url = config.gateway_url.rstrip('/')

    async def connect(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout / 1000.0)
            )
            logger.info(f"Connected to document gateway {self.base_url} ({self.config.network})")

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        if not self.session:
            raise StoreError("Gateway session not open. Call connect() first.")

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, json=to_wire(body) if body is not None else None) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise StoreError(
                        f"Gateway {method} {path} failed: {response.status} {text[:200]}",
                        status=response.status
                    )
                if response.status == 204:
                    return None
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise StoreError(f"Gateway {method} {path} returned invalid JSON") from e
        except asyncio.TimeoutError as e:
            raise StoreError(f"Gateway {method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise StoreError(f"Gateway {method} {path} failed: {e}") from e

    async def fetch_contract(self, contract_id: str) -> Dict[str, Any]:
        return await self._request('GET', f"/v1/contracts/{contract_id}")

    async def ping(self) -> bool:
        try:
            await self.fetch_contract(self.config.contract_id)
            return True
        except StoreError as e:
            logger.warning(f"Gateway ping failed: {e}")
            return False

    async def query(
        self,
        document_type: str,
        where: Sequence[WhereClause],
        limit: Optional[int] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        start_after: Optional[str] = None
    ) -> List[PlatformDocument]:
        body: Dict[str, Any] = {
            'contractId': self.config.contract_id,
            'documentType': document_type,
            'where': [list(clause) for clause in where],
        }
        if limit:
            body['limit'] = limit
        if order_by:
            body['orderBy'] = [list(order) for order in order_by]
        if start_after:
            body['startAfter'] = start_after

        result = await self._request('POST', "/v1/documents/query", body) or {}
        return [PlatformDocument.from_wire(raw) for raw in result.get('documents', []) if raw]

    async def _submit(self, transition: Dict[str, Any]) -> Any:
        payload = {
            'transition': transition,
            'signature': self.signer.sign(canonical_json(transition)),
            'publicKey': self.signer.public_key_hex,
        }
        return await self._request('POST', "/v1/state-transitions", payload)

    def _transition(self, action: str, document_type: str, **fields: Any) -> Dict[str, Any]:
        return {
            'action': action,
            'contractId': self.config.contract_id,
            'documentType': document_type,
            'ownerId': self.signer.identity_id,
            'entropy': generate_entropy(),
            **fields,
        }

    async def create(self, document_type: str, data: Dict[str, Any]) -> str:
        result = await self._submit(self._transition('create', document_type, data=data)) or {}
        document = result.get('document') or {}
        return document.get('$id') or result.get('$id') or 'unknown'

    async def replace(self, document_type: str, document_id: str, data: Dict[str, Any], revision: int) -> None:
        await self._submit(self._transition(
            'replace', document_type, documentId=document_id, data=data, revision=revision
        ))

    async def delete(self, document_type: str, document_id: str) -> None:
        await self._submit(self._transition('delete', document_type, documentId=document_id))
