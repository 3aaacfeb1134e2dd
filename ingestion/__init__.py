"""
League history import pipeline.

Modules:
    orchestrator: Multi-season backfill jobs (resumable, cancellable, leased)
    sync: Gap detection and week-level incremental sync
    dedup: Payload fingerprints, in-batch dedup, pre-storage validation
    integrity: Read-only audit of stored data and bounded remediation
    progress: In-memory progress tracking with persisted checkpoints
    scheduler: APScheduler integration for periodic sync and cleanup
    schedule: Season calendar (current season, current week)
    events: Progress event bus

Subpackages:
    providers: ESPN fantasy API client and credential stores
    transformers: Provider payload to row normalization
    loaders: Idempotent upserts into the league tables

Architecture:
    An import walks each requested season through
    pending -> fetching -> processing -> completed (or failed):

    1. Fetch - league, weekly scoreboards and transactions from the provider
    2. Process - deduplicate, validate, fingerprint
    3. Store - one transaction per season, skipped when the fingerprint
       matches what is already stored

    A failed season never stops the remaining seasons of the job.

Usage:
    from ingestion.orchestrator import ImportOrchestrator
    from ingestion.sync import IncrementalSyncPlanner
    from ingestion.integrity import DataIntegrityChecker

Example:
    orchestrator = ImportOrchestrator(async_session_maker, SettingsCredentialStore())
    import_id = await orchestrator.start_import(league, 2018, 2023)
    progress = await orchestrator.wait(import_id)

    print(f"{progress.completed_seasons}/{progress.total_seasons} seasons imported")
"""

__all__ = [
    "ImportOrchestrator",
    "IncrementalSyncPlanner",
    "DataIntegrityChecker",
    "DeduplicationService",
    "ProgressTracker",
    "SyncScheduler",
]
