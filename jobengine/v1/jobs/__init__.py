"""
Background job engine.

This package provides a store-backed job system with:
- Tenant-scoped enqueueing of typed jobs with opaque payloads
- Time-bounded leases claimed atomically by competing workers
- Registry-based pluggable handlers
- Bounded retries with exponential backoff and zombie write protection
"""
