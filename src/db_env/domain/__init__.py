"""Domain layer - value types, errors and recovery services."""
