"""Runtime components: domain models, derivation engines, sources and transport."""
