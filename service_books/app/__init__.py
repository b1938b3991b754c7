"""
Book metadata service package for the Book Access Layer.

The service fronts the external book metadata provider (Google Books),
protecting every outbound call with:
- Response caching: in-memory TTL cache, checked before anything else
- Circuit breaking: stop calling a provider that keeps failing
- Retries: exponential backoff with jitter for transient failures
- Admission control: sliding-window bound on outbound request volume

Structure:
- app.main: FastAPI app, routes, and composition of the components below.
- app.gateway: The cache-first, protected provider call.
- app.adapters: HTTP client for the provider.
- app.caching: Response cache.
- app.ratelimit: Sliding-window rate limiter.
- app.persistence: Storage contract for fetched records.
- app.domain: Provider data models.
"""
