"""Authentication and authorization.

Learn: Two ways to log in, one authorization model:
1. API key → prefix match against the control plane's key list
2. OIDC    → identity provider, then owner bootstrap and remote linking

Both produce a server-side session; every privileged action then checks
a capability bit from auth.roles.
"""
