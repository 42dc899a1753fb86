"""
Media Blob API - object storage behind a single action-keyed endpoint.

This package contains the complete application:
- core: Framework-agnostic action routing and handlers
- infrastructure: Blob store and document fetch integrations
- api: FastAPI route and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
