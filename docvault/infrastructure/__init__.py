"""Infrastructure layer for storage backends, Redis, SQL and metrics."""
