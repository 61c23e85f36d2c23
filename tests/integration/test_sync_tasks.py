"""End-to-end sync cycles against the in-memory store and a mocked node."""

import json

import pytest

from governance_oracle.exceptions import ProposalParseError, RpcTransportError
from governance_oracle.models import (
    MasternodeListEntry,
    ProposalStatus,
    RawTransaction,
    TxOutput,
    VoteOutcome,
    VoteRecord,
)
from governance_oracle.publisher import MASTERNODE_VOTE, PROPOSAL
from governance_oracle.sync import MasternodeSync, ProposalSync, VoteSync
from governance_oracle.sync.proposal_sync import parse_proposal_data_string

HASH_A = 'a' * 64
HASH_B = 'b' * 64
HASH_C = 'c' * 64
PRO_TX_1 = '1' * 64
PRO_TX_2 = '2' * 64
CURRENT_EPOCH = 100


def counts(result):
    return result.created, result.updated, result.errors


@pytest.mark.integration
class TestProposalParsing:

    def test_flat_form(self):
        data = parse_proposal_data_string(json.dumps({
            'name': 'p', 'url': 'https://x', 'payment_address': 'yAddr', 'payment_amount': 1.5,
            'start_epoch': 1, 'end_epoch': 2, 'type': 1,
        }))
        assert (data.name, data.payment_amount, data.end_epoch) == ('p', 1.5, 2)

    def test_legacy_wrapped_form(self):
        data = parse_proposal_data_string(json.dumps([
            ['proposal', {'name': 'legacy', 'url': 'https://x', 'payment_address': 'yAddr', 'end_epoch': 7}]
        ]))
        assert data.name == 'legacy'
        assert data.end_epoch == 7

    @pytest.mark.parametrize("raw", ["not json", "[]", json.dumps({'name': 'missing url'})])
    def test_unusable_payloads(self, raw):
        with pytest.raises(ProposalParseError):
            parse_proposal_data_string(raw)


@pytest.mark.integration
class TestProposalSync:

    @pytest.mark.asyncio
    async def test_two_proposals_then_idempotent_rerun(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'first'),
            HASH_B: gobject_factory(HASH_B, 'second'),
        }
        sync = ProposalSync(mock_dash_core, publisher)

        first = await sync.sync()
        second = await sync.sync()

        assert counts(first) == (2, 0, 0)
        assert counts(second) == (0, 0, 0)
        assert second.deleted == 0

    @pytest.mark.asyncio
    async def test_derived_fields(self, mock_dash_core, publisher, store, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'x' * 60, end_epoch=CURRENT_EPOCH - 1, yes=15, no=2, abstain=1),
        }

        await ProposalSync(mock_dash_core, publisher).sync()

        doc = list(store.documents[PROPOSAL].values())[0].data
        assert doc['proposalHash'] == bytes.fromhex(HASH_A)
        assert doc['name'] == 'x' * 40
        assert doc['paymentAmount'] == 1_250_000_000
        assert doc['status'] == ProposalStatus.PASSED.value
        assert doc['fundingThreshold'] == 10
        assert doc['totalMasternodes'] == 100
        assert doc['createdAtBlockHeight'] == 1700000000
        assert doc['collateralHash'] == 'c' * 64

    @pytest.mark.asyncio
    async def test_vote_change_is_an_update(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {HASH_A: gobject_factory(HASH_A, 'p', yes=3)}
        sync = ProposalSync(mock_dash_core, publisher)
        await sync.sync()

        mock_dash_core.get_governance_objects.return_value = {HASH_A: gobject_factory(HASH_A, 'p', yes=4)}
        result = await sync.sync()

        assert counts(result) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_funded_proposal(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'paid', is_funded=True),
        }
        await ProposalSync(mock_dash_core, publisher).sync()

        stored = await publisher.find_proposal_by_hash(HASH_A)
        assert stored.status == ProposalStatus.FUNDED

    @pytest.mark.asyncio
    async def test_bad_data_string_counts_error_and_continues(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'broken', data_string='{not json'),
            HASH_B: gobject_factory(HASH_B, 'fine'),
            HASH_C: gobject_factory(HASH_C, 'trigger', object_type=2),
        }

        result = await ProposalSync(mock_dash_core, publisher).sync()

        assert counts(result) == (1, 0, 1)

    @pytest.mark.asyncio
    async def test_malformed_hash_is_skipped(self, mock_dash_core, publisher, store, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            'not-a-hash': gobject_factory('not-a-hash', 'odd'),
            HASH_B: gobject_factory(HASH_B, 'fine'),
        }

        result = await ProposalSync(mock_dash_core, publisher).sync()

        assert counts(result) == (1, 0, 1)
        assert len(store.documents[PROPOSAL]) == 1

    @pytest.mark.asyncio
    async def test_unparseable_proposal_is_not_deleted(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {HASH_A: gobject_factory(HASH_A, 'p')}
        sync = ProposalSync(mock_dash_core, publisher)
        await sync.sync()

        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'p', data_string='garbage'),
        }
        result = await sync.sync()

        assert result.deleted == 0
        assert await publisher.find_proposal_by_hash(HASH_A) is not None

    @pytest.mark.asyncio
    async def test_withdrawn_proposal_is_deleted(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'stays'),
            HASH_B: gobject_factory(HASH_B, 'withdrawn'),
        }
        sync = ProposalSync(mock_dash_core, publisher)
        await sync.sync()

        mock_dash_core.get_governance_objects.return_value = {HASH_A: gobject_factory(HASH_A, 'stays')}
        result = await sync.sync()

        assert result.deleted == 1
        assert await publisher.find_proposal_by_hash(HASH_B) is None

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, mock_dash_core, publisher):
        mock_dash_core.get_governance_objects.side_effect = RpcTransportError('gobject', 'refused')

        with pytest.raises(RpcTransportError):
            await ProposalSync(mock_dash_core, publisher).sync()

    @pytest.mark.asyncio
    async def test_collateral_pub_key(self, mock_dash_core, publisher, gobject_factory):
        pubkey = '02' + 'ab' * 32
        mock_dash_core.get_raw_transaction.return_value = RawTransaction(txid=HASH_C, vout=[
            TxOutput(value=1.0, n=0, script_asm='OP_RETURN'),
            TxOutput(value=5.0, n=1, script_asm=f'{pubkey} OP_CHECKSIG', script_type='pubkey'),
        ])
        sync = ProposalSync(mock_dash_core, publisher)

        assert await sync.extract_collateral_pub_key(HASH_C) == pubkey

    @pytest.mark.asyncio
    async def test_collateral_address_and_fetch_failure(self, mock_dash_core, publisher):
        mock_dash_core.get_raw_transaction.return_value = RawTransaction(txid=HASH_C, vout=[
            TxOutput(value=5.0, n=0, script_asm='OP_DUP OP_HASH160 ab OP_EQUALVERIFY OP_CHECKSIG',
                     addresses=['yCollateral']),
        ])
        sync = ProposalSync(mock_dash_core, publisher)
        assert await sync.extract_collateral_pub_key(HASH_C) == 'yCollateral'

        mock_dash_core.get_raw_transaction.side_effect = RpcTransportError('getrawtransaction', 'timeout')
        assert await sync.extract_collateral_pub_key(HASH_C) is None


@pytest.mark.integration
class TestVoteSync:

    @pytest.mark.asyncio
    async def test_votes_synced_for_active_proposals_only(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'open'),
            HASH_B: gobject_factory(HASH_B, 'closed', end_epoch=CURRENT_EPOCH - 5),
        }
        await ProposalSync(mock_dash_core, publisher).sync()
        mock_dash_core.get_governance_votes.return_value = [
            VoteRecord(pro_tx_hash=PRO_TX_1, outcome=VoteOutcome.YES, timestamp=1700000000, vote_hash='ff'),
            VoteRecord(pro_tx_hash=PRO_TX_2, outcome=VoteOutcome.NO, timestamp=1700000001),
        ]
        sync = VoteSync(mock_dash_core, publisher)

        first = await sync.sync()
        second = await sync.sync()

        mock_dash_core.get_governance_votes.assert_called_with(HASH_A)
        assert mock_dash_core.get_governance_votes.await_count == 2
        assert counts(first) == (2, 0, 0)
        assert counts(second) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_changed_vote_is_updated(self, mock_dash_core, publisher, store, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {HASH_A: gobject_factory(HASH_A, 'open')}
        await ProposalSync(mock_dash_core, publisher).sync()
        sync = VoteSync(mock_dash_core, publisher)

        mock_dash_core.get_governance_votes.return_value = [
            VoteRecord(pro_tx_hash=PRO_TX_1, outcome=VoteOutcome.YES, timestamp=1700000000),
        ]
        await sync.sync()
        mock_dash_core.get_governance_votes.return_value = [
            VoteRecord(pro_tx_hash=PRO_TX_1, outcome=VoteOutcome.ABSTAIN, timestamp=1700000100),
        ]
        result = await sync.sync()

        assert counts(result) == (0, 1, 0)
        assert len(store.documents[MASTERNODE_VOTE]) == 1

    @pytest.mark.asyncio
    async def test_vote_fetch_failure_counts_error(self, mock_dash_core, publisher, gobject_factory):
        mock_dash_core.get_governance_objects.return_value = {
            HASH_A: gobject_factory(HASH_A, 'one'),
            HASH_B: gobject_factory(HASH_B, 'two'),
        }
        await ProposalSync(mock_dash_core, publisher).sync()

        async def votes(proposal_hash):
            if proposal_hash == HASH_A:
                raise RpcTransportError('gobject', 'timeout')
            return [VoteRecord(pro_tx_hash=PRO_TX_1, outcome=VoteOutcome.YES, timestamp=1)]

        mock_dash_core.get_governance_votes.side_effect = votes
        result = await VoteSync(mock_dash_core, publisher).sync()

        assert counts(result) == (1, 0, 1)


@pytest.mark.integration
class TestMasternodeSync:

    @pytest.mark.asyncio
    async def test_enabled_flag_changes(self, mock_dash_core, publisher):
        def listing(status_1: str):
            return {
                PRO_TX_1: MasternodeListEntry(pro_tx_hash=PRO_TX_1, status=status_1, voting_address='not-base58'),
                PRO_TX_2: MasternodeListEntry(pro_tx_hash=PRO_TX_2, status='POSE_BANNED', payee='yPayee'),
            }

        mock_dash_core.get_masternode_list.return_value = listing('ENABLED')
        sync = MasternodeSync(mock_dash_core, publisher)

        first = await sync.sync()
        unchanged = await sync.sync()
        mock_dash_core.get_masternode_list.return_value = listing('POSE_BANNED')
        banned = await sync.sync()

        assert counts(first) == (2, 0, 0)
        assert counts(unchanged) == (0, 0, 0)
        assert counts(banned) == (0, 1, 0)

        record = await publisher.find_masternode_by_pro_tx_hash(PRO_TX_2)
        assert record.is_enabled is False
        assert len(record.voting_key_hash) == 40
