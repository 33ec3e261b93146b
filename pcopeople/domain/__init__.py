"""Domain Layer: models, events and ports shared by every other layer."""
