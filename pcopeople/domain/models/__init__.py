"""Domain models: resources, batch operations and match criteria."""
