"""SLA definitions, per-ticket clocks and compliance reporting."""
