"""Pure integer financial math: prices, cost basis, CL liquidity math and APR."""
