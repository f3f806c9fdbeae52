"""
Read-only blockchain access with endpoint failover

Each endpoint gets one attempt; on any transport or decode failure the
same read is replayed against the next endpoint. Writes never go through
here, they go through the relayer.
"""
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

from web3 import AsyncWeb3, Web3

from polywallet.models.errors import RpcExhausted
from polywallet.polymarket.contracts import ERC1155_ABI, ERC20_ABI

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockchainReader(Protocol):
    """Read capability against a single endpoint"""

    name: str

    async def allowance(self, token: str, owner: str, spender: str) -> int: ...

    async def is_approved_for_all(self, token: str, owner: str, operator: str) -> bool: ...

    async def balance_of(self, token: str, owner: str) -> int: ...


class Web3Reader:
    """BlockchainReader backed by one JSON-RPC endpoint"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.name = url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": timeout}))

    def _erc20(self, token: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    def _erc1155(self, token: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC1155_ABI)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._erc20(token).functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    async def is_approved_for_all(self, token: str, owner: str, operator: str) -> bool:
        return await self._erc1155(token).functions.isApprovedForAll(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(operator),
        ).call()

    async def balance_of(self, token: str, owner: str) -> int:
        return await self._erc20(token).functions.balanceOf(
            Web3.to_checksum_address(owner)
        ).call()

    def __repr__(self) -> str:
        return f"Web3Reader({self.name})"


class ResilientReader:
    """Runs a read against a ranked list of readers, failing over in order"""

    def __init__(self, readers: Sequence[BlockchainReader]):
        self.readers: List[BlockchainReader] = list(readers)

    @classmethod
    def from_urls(cls, urls: Sequence[str], timeout: float = 10.0) -> "ResilientReader":
        return cls([Web3Reader(url, timeout=timeout) for url in urls])

    async def run(self, read: Callable[[BlockchainReader], Awaitable[T]], description: str = "read") -> T:
        """
        Execute `read` against reader 0, then 1, ... until one succeeds

        `read` may issue several queries (e.g. under asyncio.gather); they all
        run against the same endpoint so the caller sees one consistent view.

        Raises:
            RpcExhausted: every endpoint failed; carries the last error
        """
        last_error: Optional[BaseException] = None
        for index, reader in enumerate(self.readers):
            try:
                return await read(reader)
            except Exception as e:
                last_error = e
                logger.warning(
                    "[RPC] %s failed on endpoint %d (%s): %s",
                    description, index, reader.name, e,
                )
        logger.error("[RPC] %s failed on all %d endpoints", description, len(self.readers))
        raise RpcExhausted(attempts=len(self.readers), last_error=last_error)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return await self.run(lambda r: r.allowance(token, owner, spender), "allowance")

    async def is_approved_for_all(self, token: str, owner: str, operator: str) -> bool:
        return await self.run(lambda r: r.is_approved_for_all(token, owner, operator), "isApprovedForAll")

    async def balance_of(self, token: str, owner: str) -> int:
        return await self.run(lambda r: r.balance_of(token, owner), "balanceOf")
