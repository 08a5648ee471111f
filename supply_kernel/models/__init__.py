"""ORM models for the supply kernel."""

from supply_kernel.models.store_document import StoreDocument

__all__ = ["StoreDocument"]
