"""
Tests for image reference parsing and registry verification.
"""

import httpx
import pytest

from unisrv.registry import (
    DOCKER_HUB,
    ImageReference,
    RegistryClient,
    RegistryError,
    RegistryToken,
    normalize_registry,
    parse_www_authenticate,
)


class TestImageReference:
    """Test image reference parsing."""

    @pytest.mark.parametrize(
        "ref,registry,repository,tag",
        [
            ("nginx", DOCKER_HUB, "library/nginx", "latest"),
            ("nginx:1.27", DOCKER_HUB, "library/nginx", "1.27"),
            ("acme/web:2", DOCKER_HUB, "acme/web", "2"),
            ("docker.io/acme/web", DOCKER_HUB, "acme/web", "latest"),
            ("ghcr.io/acme/web:1.4", "ghcr.io", "acme/web", "1.4"),
            ("localhost:5000/tools/app:dev", "localhost:5000", "tools/app", "dev"),
            ("localhost/app", "localhost", "app", "latest"),
        ],
    )
    def test_parse(self, ref, registry, repository, tag):
        parsed = ImageReference.parse(ref)
        assert parsed.registry == registry
        assert parsed.repository == repository
        assert parsed.tag == tag
        assert parsed.digest is None

    def test_digest_pinned(self):
        parsed = ImageReference.parse("ghcr.io/acme/web@sha256:abc123")
        assert parsed.tag is None
        assert parsed.reference == "sha256:abc123"

    def test_docker_hub_api_host(self):
        assert ImageReference.parse("nginx").api_host == "registry-1.docker.io"
        assert ImageReference.parse("ghcr.io/acme/web").api_host == "ghcr.io"

    @pytest.mark.parametrize(
        "ref", ["", "   ", "Nginx", "nginx:", "https://ghcr.io/acme/web", "acme web", "web@nodigest"]
    )
    def test_invalid(self, ref):
        with pytest.raises(RegistryError):
            ImageReference.parse(ref)


class TestWwwAuthenticate:
    def test_full_challenge(self):
        realm, service, scope = parse_www_authenticate(
            'Bearer realm="https://ghcr.io/token",service="ghcr.io",scope="repository:a/b:pull"'
        )
        assert realm == "https://ghcr.io/token"
        assert service == "ghcr.io"
        assert scope == "repository:a/b:pull"

    def test_basic_rejected(self):
        with pytest.raises(RegistryError, match="expected Bearer"):
            parse_www_authenticate('Basic realm="registry"')

    def test_missing_realm(self):
        with pytest.raises(RegistryError, match="No realm"):
            parse_www_authenticate('Bearer service="ghcr.io"')


def registry_handler(manifests, token_status=200):
    """Build a MockTransport handler emulating a token-protected registry."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path == "/v2/":
            return httpx.Response(
                401,
                headers={
                    "WWW-Authenticate": 'Bearer realm="https://auth.example.com/token",service="ghcr.io"'
                },
            )
        if request.url.host == "auth.example.com":
            if token_status != 200:
                return httpx.Response(token_status)
            return httpx.Response(200, json={"token": "scoped-token"})
        ref = path.rsplit("/manifests/", 1)[-1]
        if ref in manifests:
            return httpx.Response(200, json=manifests[ref])
        return httpx.Response(404, json={"errors": [{"code": "MANIFEST_UNKNOWN"}]})

    return handler, seen


INDEX = {
    "schemaVersion": 2,
    "manifests": [
        {"digest": "sha256:arm", "platform": {"architecture": "arm64", "os": "linux"}},
        {"digest": "sha256:amd", "platform": {"architecture": "amd64", "os": "linux"}},
    ],
}


class TestRegistryClient:
    """Token exchange and manifest lookup against a mocked registry."""

    @pytest.mark.asyncio
    async def test_verify_with_index(self):
        handler, seen = registry_handler({"1.4": INDEX, "sha256:amd": {"schemaVersion": 2}})
        client = RegistryClient(transport=httpx.MockTransport(handler))

        try:
            token = await client.verify_and_get_token("ghcr.io/acme/web:1.4", "bob", "secret")
        finally:
            await client.close()

        assert token == "scoped-token"
        token_request = seen[1]
        assert token_request.url.params["scope"] == "repository:acme/web:pull"
        assert token_request.url.params["service"] == "ghcr.io"
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert seen[-1].url.path == "/v2/acme/web/manifests/sha256:amd"
        assert seen[-1].headers["Authorization"] == "Bearer scoped-token"

    @pytest.mark.asyncio
    async def test_no_amd64_in_index(self):
        index = {"schemaVersion": 2, "manifests": [INDEX["manifests"][0]]}
        handler, _ = registry_handler({"1.4": index})
        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="linux/amd64"):
            await client.verify_and_get_token("ghcr.io/acme/web:1.4", "bob", "secret")
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_manifest(self):
        handler, _ = registry_handler({})
        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="HTTP 404"):
            await client.verify_and_get_token("ghcr.io/acme/web:nope", "bob", "secret")
        await client.close()

    @pytest.mark.asyncio
    async def test_token_refused(self):
        handler, _ = registry_handler({"1.4": INDEX}, token_status=403)
        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="Failed to authenticate with registry 'ghcr.io'"):
            await client.verify_and_get_token("ghcr.io/acme/web:1.4", "bob", "wrong")
        await client.close()

    @pytest.mark.asyncio
    async def test_private_registry_requires_credentials(self):
        handler, seen = registry_handler({})
        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="No credentials found for registry 'ghcr.io'"):
            await client.verify_and_get_token("ghcr.io/acme/web:1.4")
        await client.close()

        assert seen == []

    @pytest.mark.asyncio
    async def test_anonymous_registry(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(200, json={"schemaVersion": 2, "layers": []})

        client = RegistryClient(transport=httpx.MockTransport(handler))
        token = await client.verify_and_get_token("nginx:1.27")
        await client.close()

        assert token is None


class TestNormalizeRegistry:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("ghcr.io", "ghcr.io"),
            ("https://GHCR.io/", "ghcr.io"),
            ("docker.io", DOCKER_HUB),
            ("registry-1.docker.io", DOCKER_HUB),
            ("localhost:5000/v2", "localhost:5000"),
        ],
    )
    def test_normalize(self, name, expected):
        assert normalize_registry(name) == expected

    def test_empty(self):
        with pytest.raises(RegistryError, match="Invalid registry"):
            normalize_registry("https://")


class TestRegistryLogin:
    """Credential check against the registry token service."""

    @pytest.mark.asyncio
    async def test_token_issued(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/v2/":
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": 'Bearer realm="https://auth.example.com/token",service="ghcr.io"'
                    },
                )
            return httpx.Response(200, json={"access_token": "login-token", "expires_in": 300})

        client = RegistryClient(transport=httpx.MockTransport(handler))
        issued = await client.login("ghcr.io", "bob", "secret")
        await client.close()

        assert issued == RegistryToken(token="login-token", expires_in=300)
        assert seen[0].url.host == "ghcr.io"
        assert seen[1].url.params["service"] == "ghcr.io"
        assert "scope" not in seen[1].url.params
        assert seen[1].headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_anonymous(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        client = RegistryClient(transport=httpx.MockTransport(handler))
        issued = await client.login(DOCKER_HUB)
        await client.close()

        assert issued.token is None
        assert seen[0].url.host == "registry-1.docker.io"

    @pytest.mark.asyncio
    async def test_rejected(self):
        handler, _ = registry_handler({}, token_status=401)
        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="Registry login failed for 'ghcr.io': HTTP 401"):
            await client.login("ghcr.io", "bob", "wrong")
        await client.close()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = RegistryClient(transport=httpx.MockTransport(handler))

        with pytest.raises(RegistryError, match="Failed to reach registry 'ghcr.io'"):
            await client.login("ghcr.io", "bob", "secret")
        await client.close()
