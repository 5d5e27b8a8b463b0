"""Position exit monitoring, entry caps and agent stats."""
