"""Mappers between ezyVet records and Vetra domain objects."""

from app.infrastructure.ezyvet.mappers.contact_mapper import ContactMapper

__all__ = ["ContactMapper"]
