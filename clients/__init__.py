# Remote service clients
from clients.authority_client import (
    RemoteAuthorityClient,
    AuthorityConnectionError,
)
