"""
Fixed-point pool price math.

Pools encode price as sqrtPriceX96 = sqrt(token1/token0) * 2^96 in raw
token units. token0 is the token with the lower address. The derived
price is always quote tokens per base token, adjusted for decimals.
"""

from decimal import Decimal, localcontext
from typing import Tuple, Union

from .types import Direction

Q96 = 2 ** 96
Q192 = Q96 * Q96
PRICE_SCALE = 10 ** 18


def is_token0(token_address: str, other_address: str) -> bool:
    """True when token_address sorts before other_address (case-insensitive)"""
    return token_address.lower() < other_address.lower()


def _decimal_adjustment(base_decimals: int, quote_decimals: int) -> Tuple[int, int]:
    """10^(base - quote) as a (numerator, denominator) integer pair"""
    exponent = base_decimals - quote_decimals
    if exponent >= 0:
        return 10 ** exponent, 1
    return 1, 10 ** -exponent


def sqrt_price_x96_to_price(
    sqrt_price_x96: int,
    base_address: str,
    quote_address: str,
    base_decimals: int,
    quote_decimals: int,
) -> float:
    """
    Convert a pool's sqrtPriceX96 into quote-per-base price.

    Both branches stay in integer arithmetic, scaled by 1e18, until the
    final division. When the base token is token1 the reciprocal is taken
    on the integers rather than on the converted float.
    """
    if sqrt_price_x96 <= 0:
        raise ValueError(f"sqrt_price_x96 must be positive, got {sqrt_price_x96}")

    sqrt_price_sq = sqrt_price_x96 * sqrt_price_x96
    adj_num, adj_den = _decimal_adjustment(base_decimals, quote_decimals)

    if is_token0(base_address, quote_address):
        # token0 = base, token1 = quote: price = S^2 / Q192 * 10^(db - dq)
        scaled = (sqrt_price_sq * adj_num * PRICE_SCALE) // (Q192 * adj_den)
    else:
        # token0 = quote, token1 = base: price = Q192 / S^2 * 10^(db - dq)
        scaled = (Q192 * adj_num * PRICE_SCALE) // (sqrt_price_sq * adj_den)

    return scaled / PRICE_SCALE


def price_to_sqrt_price_x96(
    price: Union[float, str, Decimal],
    base_address: str,
    quote_address: str,
    base_decimals: int,
    quote_decimals: int,
) -> int:
    """Inverse of sqrt_price_x96_to_price"""
    with localcontext() as ctx:
        ctx.prec = 120
        price_dec = Decimal(str(price))
        if price_dec <= 0:
            raise ValueError(f"price must be positive, got {price}")

        adjustment = Decimal(10) ** (base_decimals - quote_decimals)

        if is_token0(base_address, quote_address):
            sqrt_price_sq = price_dec * Decimal(Q192) / adjustment
        else:
            sqrt_price_sq = Decimal(Q192) * adjustment / price_dec

        return int(sqrt_price_sq.sqrt().to_integral_value())


def compute_spread_bps(price_a: float, price_b: float) -> float:
    """|a - b| / avg(a, b) in basis points; 0 when the average is not positive"""
    avg = (price_a + price_b) / 2
    if avg <= 0:
        return 0.0
    return abs(price_a - price_b) / avg * 10000


def discrepancy_direction(price_a: float, price_b: float) -> Direction:
    """Direction flag naming the chain with the lower price"""
    return Direction.A_CHEAPER if price_a < price_b else Direction.B_CHEAPER
