"""Price actions: watchlist jobs, velocity metrics and price simulation."""
