"""onetime/ -- One-time tokens and the scavenger that expires them.

Layer rule: may import from core/ and scim/. Does NOT import from api/, web/,
registration/, or mail/.
"""
