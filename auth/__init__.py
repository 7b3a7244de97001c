"""auth/ -- Identities, sessions and remember cookies for Commons.

Layer rule: auth/ imports only core/ + third-party libraries.
It does NOT import from api/, web/ or community/.
api/, web/ and community/ import from auth/, not the other way around.
"""
