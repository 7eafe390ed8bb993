"""
Core Application - Infrastructure & Base Classes

Generic building blocks with no payment plan logic.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ConflictError: State conflicts (optimistic locking, held locks)
    - ExternalServiceError: Third-party service failures

Views (import from core.views):
    - health_check: Database and Redis probe
"""
