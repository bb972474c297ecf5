"""auth/ -- Identity, credentials and session tokens for the note service.

Layer rule: auth/ imports only core/ plus stdlib and third-party libraries.
It does NOT import from api/ or notes/.
api/ imports from auth/, not the other way around.
"""
