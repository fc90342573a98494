"""scim/ -- Client side of the identity server's SCIM 2.0 API.

Layer rule: scim/ imports only stdlib + third-party libraries.
It does NOT import from api/, web/, registration/, onetime/, or mail/.
"""
