"""Storage backends and the shared resilience wrapper applied to them."""
