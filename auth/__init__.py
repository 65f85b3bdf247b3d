"""auth/ -- Authentication, session and authorization core for FreightDesk.

Layer rule: auth/ imports stdlib, third-party libraries and core/config only.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
