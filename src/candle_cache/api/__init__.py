"""HTTP operational surface for the candle cache."""
