"""
Apps package - ASGI services built on Guardian Auth.

- auth_gateway: example FastAPI service wired with the Guardian Auth middleware
"""
