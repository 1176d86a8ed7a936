"""External data source clients."""
