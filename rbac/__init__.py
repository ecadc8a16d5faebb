"""rbac/ -- Role-based access control core.

Layer rule: rbac/ imports only stdlib, third-party libraries and core/.
Components are wired explicitly: every class receives its RBACStore (and,
where needed, its TokenService or PermissionResolver) through its
constructor. There is no module-level store singleton.
"""
