"""Context assembly, rate limiting, and reply orchestration."""
