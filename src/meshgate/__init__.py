"""meshgate — identity and authorization gateway for a mesh VPN control plane.

Binds a local user/role store to an OIDC identity provider and to the
control plane's own user and pre-auth key API: capability checks,
API-key logins, first-owner bootstrap, identity linking and pre-auth
key listing.
"""

__version__ = "0.1.0"
