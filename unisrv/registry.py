"""
Container registry client for image verification.

Parses image references, exchanges registry credentials for a
repository-scoped pull token and fetches the image manifest to prove the
image exists before any instance is created. `login` checks credentials
against the registry token service before they are saved.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

DOCKER_HUB = "index.docker.io"
DOCKER_HUB_API = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)


class RegistryError(Exception):
    """Image reference or registry communication failure."""

    pass


@dataclass
class RegistryToken:
    token: Optional[str] = None
    expires_in: Optional[int] = None


def normalize_registry(name: str) -> str:
    """Registry host as image references name it: no scheme or path, Docker Hub aliases folded."""
    host = name.strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0].lower()
    if not host:
        raise RegistryError(f"Invalid registry: '{name}'")
    if host in ("docker.io", "registry-1.docker.io"):
        return DOCKER_HUB
    return host


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference such as ghcr.io/acme/web:1.2 or nginx."""

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, image_ref: str) -> "ImageReference":
        """
        Parse an image reference into registry, repository and tag/digest.

        Args:
            image_ref: Full or short image reference

        Returns:
            Parsed reference; Docker Hub is assumed when no registry is given

        Raises:
            RegistryError: If the reference is malformed
        """
        ref = image_ref.strip()
        if not ref or any(c.isspace() for c in ref) or "://" in ref:
            raise RegistryError(f"Invalid image reference: '{image_ref}'")

        digest = None
        if "@" in ref:
            ref, digest = ref.split("@", 1)
            if ":" not in digest:
                raise RegistryError(f"Invalid digest in image reference: '{image_ref}'")

        parts = ref.split("/", 1)
        if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
            registry, remainder = parts
        else:
            registry, remainder = DOCKER_HUB, ref

        registry = normalize_registry(registry)

        tag = None
        last = remainder.rsplit("/", 1)[-1]
        if ":" in last:
            remainder, tag = remainder.rsplit(":", 1)
            if not tag:
                raise RegistryError(f"Empty tag in image reference: '{image_ref}'")

        if not remainder or remainder != remainder.lower() or remainder.startswith("/"):
            raise RegistryError(
                f"Invalid repository in image reference: '{image_ref}' (must be lowercase)"
            )

        if registry == DOCKER_HUB and "/" not in remainder:
            remainder = f"library/{remainder}"

        if tag is None and digest is None:
            tag = "latest"

        return cls(registry=registry, repository=remainder, tag=tag, digest=digest)

    @property
    def reference(self) -> str:
        """Digest if pinned, else tag."""
        return self.digest or self.tag or "latest"

    @property
    def api_host(self) -> str:
        return DOCKER_HUB_API if self.registry == DOCKER_HUB else self.registry


def parse_www_authenticate(header: str) -> Tuple[str, Optional[str], Optional[str]]:
    """
    Parse a Bearer WWW-Authenticate challenge.

    Format: Bearer realm="https://auth.example.com/token",service="registry.example.com",scope="..."

    Returns:
        Tuple of (realm, service, scope)
    """
    if not header.startswith("Bearer "):
        raise RegistryError("Unsupported authentication scheme, expected Bearer auth")

    params: Dict[str, str] = {}
    for part in header[len("Bearer ") :].split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            params[key.strip()] = value.strip().strip('"')

    realm = params.get("realm")
    if not realm:
        raise RegistryError("No realm found in WWW-Authenticate header")
    return realm, params.get("service"), params.get("scope")


class RegistryClient:
    """Client for interacting with container registries."""

    def __init__(
        self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        )

    async def get_scoped_token(
        self,
        reference: ImageReference,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[str]:
        """
        Get a pull token scoped to the image's repository.

        Returns:
            Bearer token, or None if the registry allows anonymous access
        """
        v2_url = f"https://{reference.api_host}/v2/"
        logger.debug(f"Checking registry endpoint for scoped token: {v2_url}")
        response = await self._client.get(v2_url)

        if response.status_code == 200:
            logger.debug("Registry allows anonymous access")
            return None

        header = response.headers.get("www-authenticate")
        if not header:
            raise RegistryError("No WWW-Authenticate header found in registry response")

        realm, service, _ = parse_www_authenticate(header)
        params = {"scope": f"repository:{reference.repository}:pull"}
        if service:
            params["service"] = service

        auth = (username, password) if username and password else None
        if auth:
            logger.debug(f"Using credentials for scoped token on {reference.registry}")
        token_response = await self._client.get(realm, params=params, auth=auth)

        if token_response.status_code != 200:
            raise RegistryError(f"Failed to get scoped token: HTTP {token_response.status_code}")

        data = token_response.json()
        token = data.get("token") or data.get("access_token")
        logger.debug("Successfully obtained scoped token")
        return str(token) if token else None

    async def get_manifest(
        self, reference: ImageReference, token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Fetch the image manifest, following an image index to linux/amd64.

        Raises:
            RegistryError: If the image does not exist or has no usable manifest
        """
        manifest = await self._fetch_manifest(reference, reference.reference, token)

        if manifest.get("schemaVersion") is None:
            raise RegistryError("No schema version found in image manifest")
        if manifest.get("schemaVersion") != 2:
            raise RegistryError(
                f"Unsupported image manifest schema version: {manifest.get('schemaVersion')}"
            )

        if "manifests" in manifest:
            logger.debug("Detected image index (multi-platform)")
            for descriptor in manifest["manifests"]:
                platform = descriptor.get("platform") or {}
                if platform.get("architecture") == "amd64" and platform.get("os") == "linux":
                    return await self._fetch_manifest(reference, descriptor["digest"], token)
            raise RegistryError("No compatible linux/amd64 image found")

        return manifest

    async def _fetch_manifest(
        self, reference: ImageReference, ref: str, token: Optional[str]
    ) -> Dict[str, Any]:
        url = f"https://{reference.api_host}/v2/{reference.repository}/manifests/{ref}"
        logger.debug(f"Fetching manifest from {url}")
        headers = {"Accept": MANIFEST_ACCEPT}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = await self._client.get(url, headers=headers)
        if response.status_code != 200:
            raise RegistryError(f"Failed to fetch manifest: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise RegistryError(f"Failed to parse image manifest: {e}") from e
        if not isinstance(data, dict):
            raise RegistryError("Failed to parse image manifest: not an object")
        return data

    async def login(
        self, registry: str, username: Optional[str] = None, password: Optional[str] = None
    ) -> RegistryToken:
        """
        Check credentials against a registry's token service.

        Returns:
            The issued token; `token` is None when the registry allows anonymous access

        Raises:
            RegistryError: If the registry rejects the credentials or cannot be reached
        """
        host = DOCKER_HUB_API if registry == DOCKER_HUB else registry
        try:
            response = await self._client.get(f"https://{host}/v2/")
            if response.status_code == 200:
                logger.debug(f"Registry {registry} allows anonymous access")
                return RegistryToken()

            header = response.headers.get("www-authenticate")
            if not header:
                raise RegistryError("No WWW-Authenticate header found in registry response")
            realm, service, scope = parse_www_authenticate(header)
            params = {}
            if service:
                params["service"] = service
            if scope:
                params["scope"] = scope

            auth = (username, password) if username and password else None
            token_response = await self._client.get(realm, params=params, auth=auth)
        except httpx.HTTPError as e:
            raise RegistryError(f"Failed to reach registry '{registry}': {e}") from e

        if token_response.status_code != 200:
            raise RegistryError(
                f"Registry login failed for '{registry}': HTTP {token_response.status_code}"
            )
        data = token_response.json()
        token = data.get("token") or data.get("access_token")
        return RegistryToken(
            token=str(token) if token else None, expires_in=data.get("expires_in")
        )

    async def verify_and_get_token(
        self,
        image_ref: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[str]:
        """
        Verify an image exists and return a pull token scoped to it.

        Registries other than Docker Hub require stored credentials.
        """
        reference = ImageReference.parse(image_ref)

        if username is None and reference.registry != DOCKER_HUB:
            raise RegistryError(
                f"No credentials found for registry '{reference.registry}'. "
                f"Please login first with: unisrv registry login {reference.registry} "
                "-u <username> --password-stdin"
            )

        try:
            token = await self.get_scoped_token(reference, username, password)
        except (RegistryError, httpx.HTTPError) as e:
            raise RegistryError(
                f"Failed to authenticate with registry '{reference.registry}': {e}"
            ) from e

        await self.get_manifest(reference, token)
        logger.info(f"Verified image {image_ref}")
        return token

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
