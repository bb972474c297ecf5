"""notes/ -- Owner-scoped note storage for the note service.

Layer rule: notes/ imports only core/ plus third-party libraries.
It does NOT import from api/ or auth/. Ownership is an integer account id
handed in by the caller; notes/ never looks accounts up itself.
"""
