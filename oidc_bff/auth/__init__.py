"""
Authentication Package

This package implements the Backend-For-Frontend login against an OpenID
Connect provider. The browser only ever receives an opaque session cookie;
tokens stay in the server-side session.

Modules:
- discovery: Provider metadata fetch and cache
- pkce: State, nonce and PKCE generation, authorization URL builder
- tokens: Code exchange and refresh against the token endpoint
- signature: Pluggable ID token signature verification (JWKS or disabled)
- validator: ID token claim checks
- roles: Identifier extraction and admin/employee role resolution
- session: Session store, cookie signing and the per-request session handle
- flow: Login and callback state machine
- routes: /auth/login, /auth/callback, /auth/me, /auth/logout, /auth/refresh

The authentication flow:
1. Browser hits /auth/login; pending state is saved, then 302 to the provider
2. User authenticates with the provider
3. Provider redirects to /auth/callback with code and state
4. Service exchanges the code, validates the ID token and resolves the role
5. Identity is saved in the session and the browser returns to the frontend
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
