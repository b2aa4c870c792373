# planner_core/crud/__init__.py

from .crud_event import event
from .crud_generation_batch import generation_batch
from .crud_ticket import ticket
