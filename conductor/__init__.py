"""Conductor: multi-tenant helpdesk and expense platform."""

__version__ = "1.0.0"
