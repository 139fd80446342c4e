"""Application settings and exchange-rate tables."""
