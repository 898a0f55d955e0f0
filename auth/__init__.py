"""auth/ -- Authentication and session lifecycle package for authkeep.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, audit/, or mailer/. Collaborators (store,
mailer, audit sink) are injected through the protocols in auth/ports.py;
api/ and main.py wire the concrete implementations in.
"""
