"""Directory service integrations."""
