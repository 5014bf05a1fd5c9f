"""
CRUD operations (Create, Read, Update, Delete) for database models.

This layer provides a clean separation between the signing pipeline and
database operations, following the Repository pattern.
"""

from petitions.crud import petition, signature, rate_limit

__all__ = ["petition", "signature", "rate_limit"]
