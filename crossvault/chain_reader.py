"""
ChainPriceReader - pool price reads for a single chain

Reads the pool's packed slot0 (sqrtPriceX96, tick, protocolFee, lpFee)
through the pool-state reader contract and converts it to a
decimal-adjusted price.
"""

from typing import Optional
from web3 import AsyncWeb3

from .config import ChainConfig
from .logging_config import get_logger
from .price_math import sqrt_price_x96_to_price
from .retry import RetryExecutor
from .types import ChainPrice, PoolNotInitializedError, RetryOptions, RPCError

COMPONENT = "PriceWatcher"

DEFAULT_READ_RETRY = RetryOptions(
    max_retries=3, base_delay=0.5, max_delay=5.0, backoff_multiplier=2
)

STATE_VIEW_ABI = [
    {
        "inputs": [{"name": "poolId", "type": "bytes32"}],
        "name": "getSlot0",
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "protocolFee", "type": "uint24"},
            {"name": "lpFee", "type": "uint24"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]


class ChainPriceReader:
    """Reads and prices one chain's pool"""

    def __init__(
        self,
        chain: ChainConfig,
        retry_options: Optional[RetryOptions] = None,
        web3: Optional[AsyncWeb3] = None
    ):
        self.chain = chain
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(chain.rpc_url))
        self.state_view = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(chain.state_view_address),
            abi=STATE_VIEW_ABI
        )
        self.pool_id = AsyncWeb3.to_bytes(hexstr=chain.pool_id)
        self.component = f"{COMPONENT}:{chain.name}"
        self.retry = RetryExecutor(retry_options or DEFAULT_READ_RETRY, self.component)
        self.logger = get_logger(self.component)

    async def _read_slot0(self):
        try:
            return await self.state_view.functions.getSlot0(self.pool_id).call()
        except Exception as e:
            raise RPCError(f"getSlot0 failed on {self.chain.name}: {e}") from e

    async def read_price(self) -> ChainPrice:
        """
        Read the pool's current price.

        Raises:
            RPCError: the view call kept failing after all retries
            PoolNotInitializedError: the pool reports sqrtPriceX96 == 0
        """
        sqrt_price_x96, tick = (await self.retry.run(self._read_slot0))[:2]
        sqrt_price_x96 = int(sqrt_price_x96)

        if sqrt_price_x96 == 0:
            raise PoolNotInitializedError(
                f"sqrtPriceX96 is 0 for chain {self.chain.name}, pool may not be initialized"
            )

        price = sqrt_price_x96_to_price(
            sqrt_price_x96,
            self.chain.base_token_address,
            self.chain.quote_token_address,
            self.chain.base_token_decimals,
            self.chain.quote_token_decimals,
        )

        self.logger.debug(
            "Pool price read",
            context={"sqrt_price_x96": str(sqrt_price_x96), "tick": int(tick), "price": price}
        )

        return ChainPrice(
            chain=self.chain.name,
            sqrt_price_x96=sqrt_price_x96,
            tick=int(tick),
            price=price,
        )
