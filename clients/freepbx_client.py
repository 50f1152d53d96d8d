"""FreePBX API client

Talks to the FreePBX API module: OAuth2 client-credentials token exchange,
then GraphQL queries for the extension list.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

import requests

log = logging.getLogger(__name__)

TOKEN_PATH = "/admin/api/api/token"
GQL_PATH = "/admin/api/api/gql"

# Fields requested from the extension type, most useful first.
EXTENSION_FIELD_PREFERENCE = [
    "extensionId",
    "name",
    "email",
    "outboundCid",
    "callerID",
    "voicemail",
]


class FreePBXAPIError(RuntimeError):
    """The FreePBX API rejected a request or returned an error payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def select_extension_fields(available: Set[str]) -> List[str]:
    """Pick the preferred extension fields the server actually exposes.

    An empty probe result means introspection was unavailable, so the full
    preference list is assumed. extensionId is always requested.
    """
    if not available:
        return list(EXTENSION_FIELD_PREFERENCE)

    fields = [f for f in EXTENSION_FIELD_PREFERENCE if f in available]
    if "extensionId" not in fields:
        fields.insert(0, "extensionId")
    return fields


def normalize_extension(row: Dict[str, Any]) -> Dict[str, str]:
    extension_id = row.get("extensionId")
    return {
        "extension": str(extension_id) if extension_id is not None else "",
        "name": row.get("name") or row.get("callerID") or "",
        "email": row.get("email") or "",
        "voicemail": row.get("voicemail") or "",
        "sipname": str(extension_id) if extension_id is not None else "",
        "outboundcid": row.get("outboundCid") or "",
    }


class FreePBXAPIClient:
    """Client for the FreePBX GraphQL API."""

    def __init__(
        self,
        url: str,
        client_id: str,
        client_secret: str,
        scope: str = "gql",
        verify_ssl: bool = True,
        timeout: int = 10,
        extension_type: str = "extension",
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize FreePBX API client.

        Args:
            url: FreePBX base URL, e.g. https://pbx.example.com
            client_id: OAuth2 application client ID
            client_secret: OAuth2 application client secret
            scope: OAuth2 scope to request
            verify_ssl: Verify the server TLS certificate
            timeout: HTTP timeout in seconds
            extension_type: GraphQL type name probed for extension fields
            session: Optional pre-built requests session
        """
        self.url = url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.extension_type = extension_type
        self.session = session or requests.Session()
        self._token: Optional[str] = None

    def get_token(self) -> str:
        """Fetch (once) an access token using the client-credentials grant."""
        if self._token:
            return self._token

        log.info("Authenticating with FreePBX API at %s", self.url)
        resp = self.session.post(
            f"{self.url}{TOKEN_PATH}",
            data={"grant_type": "client_credentials", "scope": self.scope},
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            verify=self.verify_ssl,
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            log.error("Token request failed: %s %s", resp.status_code, resp.text[:400])
            raise FreePBXAPIError(f"Failed to get access token: {resp.status_code}", resp.status_code)

        token = (resp.json() or {}).get("access_token")
        if not token:
            raise FreePBXAPIError("No access token received")

        self._token = token
        return token

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL query and return its `data` object."""
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        resp = self.session.post(
            f"{self.url}{GQL_PATH}",
            json=payload,
            headers={"Authorization": f"Bearer {self.get_token()}"},
            verify=self.verify_ssl,
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            log.error("GraphQL request failed: %s %s", resp.status_code, resp.text[:400])
            raise FreePBXAPIError(f"GraphQL request failed: {resp.status_code}", resp.status_code)

        body = resp.json() or {}
        errors = body.get("errors")
        if errors:
            message = (errors[0] or {}).get("message") or "Unknown error"
            raise FreePBXAPIError(f"GraphQL error: {message}")

        return body.get("data") or {}

    def available_extension_fields(self) -> Set[str]:
        """Ask the schema which fields the extension type exposes.

        Servers with introspection disabled return an empty set.
        """
        query = """
        query ($name: String!) {
            __type(name: $name) {
                fields {
                    name
                }
            }
        }
        """
        try:
            data = self.graphql(query, {"name": self.extension_type})
        except FreePBXAPIError as e:
            log.info("Extension field introspection unavailable: %s", e)
            return set()

        type_info = data.get("__type") or {}
        return {f["name"] for f in type_info.get("fields") or [] if f.get("name")}

    def fetch_extensions(self) -> List[Dict[str, str]]:
        """
        Get all extensions.

        Returns:
            List of normalized extension dictionaries
        """
        self.get_token()
        fields = select_extension_fields(self.available_extension_fields())
        query = """
        query {
            fetchAllExtensions {
                status
                message
                totalCount
                extension {
                    %s
                }
            }
        }
        """ % "\n                    ".join(fields)

        data = self.graphql(query)
        result = data.get("fetchAllExtensions") or {}
        if not result.get("status"):
            raise FreePBXAPIError(result.get("message") or "Failed to fetch extensions")

        extensions = [normalize_extension(row) for row in result.get("extension") or []]
        log.info("Parsed %d extensions", len(extensions))
        return extensions
