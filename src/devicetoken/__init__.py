"""devicetoken -- OAuth2 device-code sign-in with a persistent token cache.

Obtains a bearer access token for a protected API: a cached (or silently
refreshed) token is used whenever one exists, and the user is asked to
complete a device-code sign-in on another device only when the identity
provider requires it. Tokens are kept in an ``0o600`` cache file so later
runs do not prompt again.

Typical workflow::

    devicetoken config set client_id 11111111-2222-3333-4444-555555555555
    devicetoken config set tenant_id contoso.onmicrosoft.com
    devicetoken config set scopes api://my-api/Access.Read
    devicetoken login               # device-code prompt on first run only
    devicetoken call /WeatherForecast

Library use::

    from devicetoken.auth import IdentitySession, TokenAcquirer
    from devicetoken.config import load_session_config

    acquirer = TokenAcquirer(IdentitySession.create(load_session_config()))
    token = acquirer.acquire_access_token()

Modules:
    app: Typer application and CLI entry point.
    auth: Token cache, cache guard, identity session, and acquisition.
    client: Bearer-authenticated HTTP client for the protected API.
    config: XDG paths, settings file, and environment overrides.
    exceptions: Exception hierarchy with exit-code mapping.
    models: Pydantic models and acquisition outcomes.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
