"""
Polymarket contract addresses, minimal ABIs and calldata encoders
"""
from typing import Dict

from eth_abi import encode
from py_clob_client.config import get_contract_config
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1
USDC_DECIMALS = 6

POLYGON_CHAIN_ID = 137

# Exchange, collateral and CTF come from py_clob_client; it does not ship the adapter
NEG_RISK_ADAPTERS: Dict[int, str] = {
    POLYGON_CHAIN_ID: "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296",
}

# Safe proxy factory / MultiSend used by the Polymarket relayer (Polygon)
SAFE_FACTORY = "0xaacFeEa03eb1561C4e67d661e40682Bd20E3541b"
SAFE_INIT_CODE_HASH = "0x2bce2127ff07fb632d16c8347c4ebf501f4841168bed00d9e6ef715ddb6fcecf"
SAFE_MULTISEND = "0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761"

# Function selectors
APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
SET_APPROVAL_FOR_ALL_SELECTOR = "0xa22cb465"  # setApprovalForAll(address,bool)
MULTISEND_SELECTOR = "0x8d80ff0a"  # multiSend(bytes)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

ERC1155_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "operator", "type": "address"},
        ],
        "name": "isApprovedForAll",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


class PolymarketContracts:
    """Contract addresses for one chain"""

    def __init__(self, chain_id: int = POLYGON_CHAIN_ID):
        if chain_id not in NEG_RISK_ADAPTERS:
            raise ValueError(f"No Polymarket contracts configured for chain {chain_id}")
        standard = get_contract_config(chain_id, False)
        neg_risk = get_contract_config(chain_id, True)
        self.chain_id = chain_id
        self.collateral = Web3.to_checksum_address(standard.collateral)
        self.conditional_tokens = Web3.to_checksum_address(standard.conditional_tokens)
        self.exchange = Web3.to_checksum_address(standard.exchange)
        self.neg_risk_exchange = Web3.to_checksum_address(neg_risk.exchange)
        self.neg_risk_adapter = Web3.to_checksum_address(NEG_RISK_ADAPTERS[chain_id])

    def exchange_for(self, neg_risk: bool) -> str:
        return self.neg_risk_exchange if neg_risk else self.exchange


def encode_approve(spender: str, amount: int = MAX_UINT256) -> str:
    """ERC-20 approve(spender, amount) calldata"""
    params = encode(["address", "uint256"], [Web3.to_checksum_address(spender), amount])
    return APPROVE_SELECTOR + params.hex()


def encode_set_approval_for_all(operator: str, approved: bool = True) -> str:
    """ERC-1155 setApprovalForAll(operator, approved) calldata"""
    params = encode(["address", "bool"], [Web3.to_checksum_address(operator), approved])
    return SET_APPROVAL_FOR_ALL_SELECTOR + params.hex()
