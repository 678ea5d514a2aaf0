"""Generation gateway: provider adapters, stream normalization, JSON repair."""
