"""
Tenant schema management: naming, provisioning, validation, auditing and quotas.

Submodules are imported directly (``from conductor.tenancy.naming import ...``);
conductor.core.database depends on the naming module.
"""
