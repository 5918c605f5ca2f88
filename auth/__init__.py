"""auth/ -- Authentication and user-management core for CredGate.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
(the kernel) in auth/factory.py. It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
