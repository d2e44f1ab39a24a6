"""Service layer: one class per store, all sharing a session factory."""
