"""
Polymarket Safe smart wallet helpers
Based on: https://github.com/Polymarket/py-builder-relayer-client

The trading wallet is a 1-of-1 Gnosis Safe owned by the user's EOA and
deployed through Polymarket's proxy factory, so its address is known
before deployment.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Sequence

from eth_abi import encode
from eth_abi.packed import encode_packed
from eth_account.messages import encode_typed_data
from web3 import Web3

from polywallet.models.wallet import MetaTransaction
from polywallet.polymarket.contracts import (
    MULTISEND_SELECTOR,
    SAFE_FACTORY,
    SAFE_INIT_CODE_HASH,
    SAFE_MULTISEND,
    ZERO_ADDRESS,
)

SAFE_FACTORY_NAME = "Polymarket Contract Proxy Factory"


class SafeOperation(IntEnum):
    CALL = 0
    DELEGATECALL = 1


@dataclass(frozen=True)
class SafeTransaction:
    to: str
    data: str
    operation: SafeOperation = SafeOperation.CALL
    value: int = 0


def derive_safe_address(owner: str, factory: str = SAFE_FACTORY) -> str:
    """CREATE2 address of the Safe the factory deploys for `owner`"""
    salt = Web3.keccak(encode(["address"], [Web3.to_checksum_address(owner)]))
    preimage = (
        b"\xff"
        + Web3.to_bytes(hexstr=factory)
        + salt
        + Web3.to_bytes(hexstr=SAFE_INIT_CODE_HASH)
    )
    return Web3.to_checksum_address(Web3.keccak(preimage)[12:])


def encode_multisend(calls: Sequence[MetaTransaction]) -> str:
    """multiSend(bytes) calldata for a list of CALLs"""
    packed = b"".join(
        encode_packed(
            ["uint8", "address", "uint256", "uint256", "bytes"],
            [
                int(SafeOperation.CALL),
                Web3.to_checksum_address(call.to),
                int(call.value),
                len(Web3.to_bytes(hexstr=call.data)),
                Web3.to_bytes(hexstr=call.data),
            ],
        )
        for call in calls
    )
    return MULTISEND_SELECTOR + encode(["bytes"], [packed]).hex()


def aggregate_calls(calls: Sequence[MetaTransaction]) -> SafeTransaction:
    """One call goes out as-is; several are wrapped in a MultiSend delegatecall"""
    if not calls:
        raise ValueError("Cannot build a Safe transaction from an empty batch")
    if len(calls) == 1:
        call = calls[0]
        return SafeTransaction(to=Web3.to_checksum_address(call.to), data=call.data, value=int(call.value))
    return SafeTransaction(
        to=Web3.to_checksum_address(SAFE_MULTISEND),
        data=encode_multisend(calls),
        operation=SafeOperation.DELEGATECALL,
    )


def safe_tx_typed_data(safe_address: str, tx: SafeTransaction, nonce: int, chain_id: int) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": [
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "SafeTx": [
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "data", "type": "bytes"},
                {"name": "operation", "type": "uint8"},
                {"name": "safeTxGas", "type": "uint256"},
                {"name": "baseGas", "type": "uint256"},
                {"name": "gasPrice", "type": "uint256"},
                {"name": "gasToken", "type": "address"},
                {"name": "refundReceiver", "type": "address"},
                {"name": "nonce", "type": "uint256"},
            ],
        },
        "primaryType": "SafeTx",
        "domain": {"chainId": chain_id, "verifyingContract": Web3.to_checksum_address(safe_address)},
        "message": {
            "to": tx.to,
            "value": tx.value,
            "data": Web3.to_bytes(hexstr=tx.data),
            "operation": int(tx.operation),
            "safeTxGas": 0,
            "baseGas": 0,
            "gasPrice": 0,
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": nonce,
        },
    }


def safe_tx_hash(safe_address: str, tx: SafeTransaction, nonce: int, chain_id: int) -> str:
    signable = encode_typed_data(full_message=safe_tx_typed_data(safe_address, tx, nonce, chain_id))
    return Web3.to_hex(Web3.keccak(b"\x19" + signable.version + signable.header + signable.body))


def pack_safe_signature(signature: str) -> str:
    """
    Convert a personal_sign signature into Safe's eth_sign form

    Safe tells eth_sign signatures apart by v > 30, so 27/28 become 31/32.
    """
    raw = Web3.to_bytes(hexstr=signature)
    if len(raw) != 65:
        raise ValueError(f"Expected a 65-byte signature, got {len(raw)} bytes")
    v = raw[64]
    if v in (0, 1):
        v += 31
    elif v in (27, 28):
        v += 4
    else:
        raise ValueError(f"Invalid signature v value: {v}")
    return Web3.to_hex(raw[:64] + bytes([v]))


def create_proxy_typed_data(chain_id: int, factory: str = SAFE_FACTORY) -> Dict[str, Any]:
    """EIP-712 payload the owner signs to have the factory deploy its Safe"""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "CreateProxy": [
                {"name": "paymentToken", "type": "address"},
                {"name": "payment", "type": "uint256"},
                {"name": "paymentReceiver", "type": "address"},
            ],
        },
        "primaryType": "CreateProxy",
        "domain": {
            "name": SAFE_FACTORY_NAME,
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(factory),
        },
        "message": {
            "paymentToken": ZERO_ADDRESS,
            "payment": 0,
            "paymentReceiver": ZERO_ADDRESS,
        },
    }
