"""Deployment tooling for the Real Estate CRM platform.

One-shot orchestration: backup, dependency installation, environment
validation, migrations, service configuration, hardening and the final
health check.
"""

__version__ = "1.0.0"
