"""
Core modules for AI Usage Sync.

This package contains the sync jobs (forward and backfill), the ingestion
pipeline, identity resolution, sync state and read-time projection.
"""
