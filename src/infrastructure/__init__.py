"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage (R2/S3) behind the BlobStore protocol
- http: Fetching stored documents by public URL

These wrappers translate between external formats and our domain models.
"""
