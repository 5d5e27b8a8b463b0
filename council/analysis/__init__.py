"""Technical indicators and chart pattern detection."""
