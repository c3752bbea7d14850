"""Domain layer: value objects, entities and exceptions (no I/O)."""
