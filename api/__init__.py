"""api/ -- JSON REST API for self-registration and activation.

Layer rule: api/ may import from core/, scim/, onetime/, registration/ and
mail/. Nothing outside api/ imports from it except asgi.py, main.py and the
rate limiter shared with web/.
"""
