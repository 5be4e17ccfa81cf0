"""docgate document gateway."""
