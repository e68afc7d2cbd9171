"""
Encore - media services for the artist/label marketplace.

This package contains the media access layer:
- core: Access policies, permission evaluation, object access service
- infrastructure: Object storage integration
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
