"""Gateway core: stores, caches, usage accounting and orchestration."""
