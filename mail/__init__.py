"""mail/ -- Localized email rendering (Jinja2) and SMTP delivery.

Layer rule: imports only stdlib + third-party libraries.
"""
