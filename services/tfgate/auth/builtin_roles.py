"""Built-in roles that exist as code, not database rows.

Built-in roles are checked in application logic (RBAC service) rather than
being stored in the roles table. The roles table only contains custom
roles created by admins; role_assignments may reference either kind.
"""

ADMIN_ROLE = "admin"
AUDIT_ROLE = "audit"
EVERYONE_ROLE = "everyone"

BUILTIN_ROLE_NAMES: frozenset[str] = frozenset({ADMIN_ROLE, AUDIT_ROLE, EVERYONE_ROLE})
