"""
Infrastructure layer - external service integrations.

- storage: Object storage (R2/S3) for uploaded media

These wrappers translate between external formats and our domain models.
"""
