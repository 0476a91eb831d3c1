"""vault/ -- Credential core for PM Connect.

Cipher, cookie-backed Credential Store, per-provider Resolvers, refresh
single-flight, and the Jira Request Builder.

Layer rule: vault/ imports from core/ and providers/ only.
It does NOT import from api/. api/ imports from vault/, not the other way around.
"""
