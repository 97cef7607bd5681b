"""In-process ledger: chain, asset custody and the escrow contract."""

from chain_escrow.ledger.assets import AssetBank, AssetHandler, handler_for
from chain_escrow.ledger.chain import Block, Chain, TransactionReceipt
from chain_escrow.ledger.contract import EscrowLedger

__all__ = [
    "AssetBank",
    "AssetHandler",
    "handler_for",
    "Block",
    "Chain",
    "TransactionReceipt",
    "EscrowLedger",
]
