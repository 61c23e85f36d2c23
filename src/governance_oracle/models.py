"""Typed records exchanged between the node client, sync tasks and publisher."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ProposalStatus(str, Enum):
    ACTIVE = "active"
    PASSED = "passed"
    FAILED = "failed"
    FUNDED = "funded"
    EXPIRED = "expired"


class VoteOutcome(str, Enum):
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


# Governance object type for proposals (triggers are type 2)
GOBJECT_TYPE_PROPOSAL = 1


@dataclass(frozen=True)
class FundingResult:
    absolute_yes_count: int = 0
    yes_count: int = 0
    no_count: int = 0
    abstain_count: int = 0


@dataclass(frozen=True)
class GovernanceObject:
    """Snapshot of one `gobject list` entry as returned by the node."""
    hash: str
    collateral_hash: str
    object_type: int
    creation_time: int
    funding: FundingResult
    data_string: str
    is_valid: bool = True
    is_funded: bool = False
    is_deleted: bool = False
    is_endorsed: bool = False

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any], hash_key: Optional[str] = None) -> 'GovernanceObject':
        funding = raw.get('FundingResult') or {}
        return cls(
            hash=raw.get('Hash') or hash_key or '',
            collateral_hash=raw.get('CollateralHash', ''),
            object_type=int(raw.get('ObjectType', 0)),
            creation_time=int(raw.get('CreationTime', 0)),
            funding=FundingResult(
                absolute_yes_count=int(funding.get('AbsoluteYesCount', 0)),
                yes_count=int(funding.get('YesCount', 0)),
                no_count=int(funding.get('NoCount', 0)),
                abstain_count=int(funding.get('AbstainCount', 0)),
            ),
            data_string=raw.get('DataString', ''),
            is_valid=bool(raw.get('fCachedValid', True)),
            is_funded=bool(raw.get('fCachedFunding', False)),
            is_deleted=bool(raw.get('fCachedDelete', False)),
            is_endorsed=bool(raw.get('fCachedEndorsed', False)),
        )


@dataclass(frozen=True)
class ProposalDataString:
    """Proposal payload embedded in a governance object's DataString."""
    name: str
    url: str
    payment_address: str
    payment_amount: float
    start_epoch: int
    end_epoch: int
    type: int = GOBJECT_TYPE_PROPOSAL


@dataclass
class ProposalData:
    """Derived proposal state published as one `proposal` document."""
    proposal_hash: str
    gobject_type: int
    name: str
    url: str
    payment_address: str
    payment_amount: int  # duffs
    start_epoch: int
    end_epoch: int
    status: ProposalStatus
    yes_count: int
    no_count: int
    abstain_count: int
    total_masternodes: int
    funding_threshold: int
    last_updated_at: int
    created_at_block_height: Optional[int] = None
    collateral_hash: Optional[str] = None
    collateral_pub_key: Optional[str] = None


@dataclass(frozen=True)
class MasternodeListEntry:
    pro_tx_hash: str
    address: str = ''
    payee: str = ''
    status: str = ''
    owner_address: Optional[str] = None
    voting_address: Optional[str] = None
    pub_key_operator: Optional[str] = None

    @classmethod
    def from_rpc(cls, pro_tx_hash: str, raw: Dict[str, Any]) -> 'MasternodeListEntry':
        # Dash Core emits lower-case keys; accept camel-case as well
        def pick(*keys: str) -> Optional[str]:
            for key in keys:
                if raw.get(key):
                    return raw[key]
            return None

        return cls(
            pro_tx_hash=pro_tx_hash.lower(),
            address=pick('address') or '',
            payee=pick('payee') or '',
            status=pick('status') or '',
            owner_address=pick('owneraddress', 'ownerAddress'),
            voting_address=pick('votingaddress', 'votingAddress'),
            pub_key_operator=pick('pubkeyoperator', 'pubKeyOperator'),
        )


@dataclass(frozen=True)
class MasternodeCount:
    total: int
    enabled: int


@dataclass
class MasternodeData:
    pro_tx_hash: str
    voting_key_hash: str
    is_enabled: bool
    last_updated_at: int
    owner_key_hash: Optional[str] = None
    payout_address: Optional[str] = None


@dataclass(frozen=True)
class VoteRecord:
    """One parsed entry of `gobject getcurrentvotes`."""
    pro_tx_hash: str
    outcome: VoteOutcome
    timestamp: int
    vote_hash: Optional[str] = None


@dataclass
class VoteData:
    proposal_hash: str
    pro_tx_hash: str
    outcome: VoteOutcome
    timestamp: int
    vote_signature: Optional[str] = None


@dataclass(frozen=True)
class TxOutput:
    value: float
    n: int
    script_asm: str = ''
    script_type: str = ''
    addresses: List[str] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> 'TxOutput':
        script = raw.get('scriptPubKey') or {}
        addresses = list(script.get('addresses') or [])
        if not addresses and script.get('address'):
            addresses = [script['address']]
        return cls(
            value=float(raw.get('value', 0)),
            n=int(raw.get('n', 0)),
            script_asm=script.get('asm', ''),
            script_type=script.get('type', ''),
            addresses=addresses,
        )


@dataclass(frozen=True)
class RawTransaction:
    txid: str
    vout: List[TxOutput]
    hex: str = ''

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> 'RawTransaction':
        return cls(
            txid=raw.get('txid', ''),
            vout=[TxOutput.from_rpc(out) for out in raw.get('vout', [])],
            hex=raw.get('hex', ''),
        )


@dataclass(frozen=True)
class ChainInfo:
    chain: str
    blocks: int
    headers: int
    verification_progress: float


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'errors': self.errors,
            'duration_ms': self.duration_ms,
        }


@dataclass(frozen=True)
class UpsertResult:
    """What an upsert did: created, updated, or neither when nothing changed."""
    created: bool = False
    updated: bool = False
