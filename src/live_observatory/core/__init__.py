"""Core resolution engine: targets, normalization, caching, quota and orchestration."""
