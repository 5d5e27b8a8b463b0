"""Exit liquidity and slippage modelling."""
