"""community/ -- Instances (tenants), groups and memberships.

Layer rule: community/ imports only core/, auth.models, auth.exceptions and
third-party libraries. It does NOT import from api/ or web/.
"""
