"""
Pydantic schemas for data validation and serialization.

This package defines Pydantic models for request/response validation
and for the derived (non-persisted) types of the import pipeline:

Schemas:
    imports: Import job views, season checkpoints, sync requirements,
        integrity issues/results, tracker checkpoints and progress events
    api: API endpoint request/response schemas

Features:
    - Automatic data validation
    - Type coercion and conversion
    - JSON serialization for JSON columns (model_dump(mode="json"))
    - OpenAPI schema generation for FastAPI

Usage:
    from schemas.imports import SeasonCheckpoint, SyncRequirement
    from schemas.api import StartImportRequest, HealthCheckResponse

Example:
    checkpoint = SeasonCheckpoint(season=2021)
    checkpoint.transition(SeasonStatus.FETCHING)

    # A completed season only regresses on a forced re-import
    checkpoint.transition(SeasonStatus.FETCHING, force=True)
"""

__all__ = [
    "LeagueRef",
    "SeasonCheckpoint",
    "ImportProgress",
    "SyncRequirement",
    "IntegrityIssue",
    "IntegrityCheckResult",
    "ValidationReport",
    "StartImportRequest",
    "HealthCheckResponse",
]
