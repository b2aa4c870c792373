# planner_core/models/__init__.py
# Import all models so Base.metadata knows every table.
# Order matters for foreign keys: events first.

from planner_core.db.base_class import Base
from planner_core.models.event import Event
from planner_core.models.ticket import Ticket
from planner_core.models.generation_batch import GenerationBatch

__all__ = [
    "Base",
    "Event",
    "Ticket",
    "GenerationBatch",
]
