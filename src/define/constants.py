"""Fixed-point scales, protocol deployment data and NFPM event signatures."""

from __future__ import annotations

# === Fixed-point scales ===

Q96 = 1 << 96
Q128 = 1 << 128
Q192 = 1 << 192
UINT256_MOD = 1 << 256

MIN_TICK = -887272
MAX_TICK = 887272

# 365.25-day year
SECONDS_PER_YEAR = 31_557_600
BASIS_POINTS_MULTIPLIER = 10_000

# === Uniswap V3 NonfungiblePositionManager ===

UNISWAPV3_PROTOCOL = "uniswapv3"

NFPM_DEFAULT_ADDRESS = "0xC36442b4a4522E871399CD717aBDD847Ab11FE88"

NFPM_ADDRESSES: dict[int, str] = {
    1: NFPM_DEFAULT_ADDRESS,
    10: NFPM_DEFAULT_ADDRESS,
    56: "0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613",
    137: NFPM_DEFAULT_ADDRESS,
    8453: "0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1",
    42161: NFPM_DEFAULT_ADDRESS,
}

# Earliest block each NFPM deployment could have emitted position events.
NFPM_DEPLOYMENT_BLOCKS: dict[int, int] = {
    1: 12_369_621,
    10: 4_294,
    56: 26_324_014,
    137: 22_757_547,
    8453: 1_371_680,
    42161: 165,
}

NFPM_EVENT_SIGNATURES = [
    "IncreaseLiquidity(uint256 indexed tokenId, uint128 liquidity, uint256 amount0, uint256 amount1)",
    "DecreaseLiquidity(uint256 indexed tokenId, uint128 liquidity, uint256 amount0, uint256 amount1)",
    "Collect(uint256 indexed tokenId, address recipient, uint256 amount0, uint256 amount1)",
]
