"""Peer consensus validation."""

from xcred.consensus.authority import AuthorityClient, HttpAuthorityClient
from xcred.consensus.budget import BudgetStore, MemoryBudgetStore, SQLiteBudgetStore
from xcred.consensus.signing import SignatureVerifier, verify_ed25519
from xcred.consensus.validator import ConsensusValidator, CrossCheck, TaskOutcome, new_node_id

__all__ = [
    "AuthorityClient",
    "HttpAuthorityClient",
    "BudgetStore",
    "MemoryBudgetStore",
    "SQLiteBudgetStore",
    "SignatureVerifier",
    "verify_ed25519",
    "ConsensusValidator",
    "CrossCheck",
    "TaskOutcome",
    "new_node_id",
]
