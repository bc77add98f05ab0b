"""Data module - canonical planning records and the entity catalog."""
from capacity_planner.data import models, entities

__all__ = ["models", "entities"]
