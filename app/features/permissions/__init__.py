"""
Permission management feature module.

Role-based permissions with a strict role hierarchy, additive per-user
custom grants with optional expiry, and an append-only audit trail.
"""
