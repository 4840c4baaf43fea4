"""FastAPI service for the Real Estate CRM platform.

This package provides the long-running HTTP service: configuration,
datastore clients, health and metrics endpoints.
"""

__version__ = "1.0.0"
