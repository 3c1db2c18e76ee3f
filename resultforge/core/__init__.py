"""Core engine: identities, dependency graph, cache and orchestration."""
