"""Ticket-side helper services: tag suggestions and per-tenant usage metrics."""
