"""
Governance oracle.

Mirrors Dash governance state (proposals, masternode votes, masternode
identities) from a Dash Core node into a document store:
- clients: Dash Core RPC client and the document store boundary
- publisher: idempotent document upserts
- sync: status calculation and the three sync tasks
- scheduler / health / main: daemon runtime
"""

__version__ = "0.1.0"
