"""Self-throttled ingestion of grid emissions and weather time series."""
