"""Agent profiles, mental state and the decision engine."""
