"""registration/ -- Self-registration form handling and account activation.

Layer rule: may import from core/, scim/, onetime/, and mail/. Does NOT
import from api/ or web/.
"""
