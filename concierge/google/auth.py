"""
Google credentials from an opaque per-user bearer token.

Obtaining and refreshing the token is the job of whoever stores it on the
user row; this module only wraps it for google-api-python-client.
"""

from google.oauth2.credentials import Credentials

from ..exceptions import ConfigurationError


def credentials_from_token(access_token: str | None) -> Credentials:
    if not access_token:
        raise ConfigurationError("No Google credential for this user")
    return Credentials(token=access_token)
