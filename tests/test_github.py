import asyncio
import base64
import json

import httpx
import pytest

from server.github import GitHub


class FakeGitHub:
    """Records requests and answers from a (method, path) -> response table."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, dict(request.url.params), body))
        status, payload = self.routes.get((request.method, request.url.path), (404, {"message": "Not Found"}))
        return httpx.Response(status, json=payload)

    def client(self):
        return GitHub("tok", "octo", transport=httpx.MockTransport(self))


def test_put_file_creates_on_branch():
    fake = FakeGitHub({("PUT", "/repos/octo/site/contents/index.html"): (201, {"commit": {"sha": "abc"}})})
    sha = asyncio.run(fake.client().put_file("site", "index.html", "<h1>hi</h1>", "add", branch="dev"))
    assert sha == "abc"
    get, put = fake.calls
    assert get[2] == {"ref": "dev"}
    assert put[3]["branch"] == "dev"
    assert "sha" not in put[3]
    assert base64.b64decode(put[3]["content"]).decode() == "<h1>hi</h1>"


def test_put_file_updates_with_existing_sha():
    fake = FakeGitHub({
        ("GET", "/repos/octo/site/contents/.github/workflows/pages.yml"): (200, {"sha": "old"}),
        ("PUT", "/repos/octo/site/contents/.github/workflows/pages.yml"): (200, {"commit": {"sha": "new"}}),
    })
    assert asyncio.run(fake.client().ensure_pages_workflow("site", "main", "name: x")) == "new"
    put = fake.calls[-1]
    assert put[3]["sha"] == "old"
    assert put[3]["branch"] == "main"


def test_put_file_raises_on_error():
    fake = FakeGitHub({("PUT", "/repos/octo/site/contents/a.txt"): (409, {"message": "conflict"})})
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(fake.client().put_file("site", "a.txt", "x", "m"))


def test_ensure_branch_creates_from_root():
    fake = FakeGitHub({
        ("GET", "/repos/octo/site/commits"): (200, [{"sha": "1234567890"}]),
        ("POST", "/repos/octo/site/git/refs"): (201, {"ref": "refs/heads/dev"}),
    })
    assert asyncio.run(fake.client().ensure_branch("site", "dev")) is True
    assert fake.calls[-1][3] == {"ref": "refs/heads/dev", "sha": "1234567890"}
    assert fake.calls[1][2] == {"sha": "main", "per_page": "1"}


def test_ensure_branch_existing():
    fake = FakeGitHub({("GET", "/repos/octo/site/git/ref/heads/dev"): (200, {"ref": "refs/heads/dev"})})
    assert asyncio.run(fake.client().ensure_branch("site", "dev")) is False
    assert len(fake.calls) == 1


def test_ensure_branch_empty_repo():
    fake = FakeGitHub({("GET", "/repos/octo/site/commits"): (200, [])})
    with pytest.raises(RuntimeError):
        asyncio.run(fake.client().ensure_branch("site", "dev"))


def test_enable_pages_creates_site():
    fake = FakeGitHub({("POST", "/repos/octo/site/pages"): (201, {"build_type": "workflow",
                                                                 "html_url": "https://octo.github.io/site/"})})
    info = asyncio.run(fake.client().enable_pages("site"))
    assert info["build_type"] == "workflow"
    assert fake.calls[-1][3] == {"build_type": "workflow"}


def test_enable_pages_switches_legacy_source():
    fake = FakeGitHub({
        ("GET", "/repos/octo/site/pages"): (200, {"build_type": "legacy"}),
        ("PUT", "/repos/octo/site/pages"): (204, {}),
    })
    info = asyncio.run(fake.client().enable_pages("site"))
    assert info["build_type"] == "workflow"
    assert fake.calls[-1][:2] == ("PUT", "/repos/octo/site/pages")


def test_enable_pages_already_on_workflow():
    fake = FakeGitHub({("GET", "/repos/octo/site/pages"): (200, {"build_type": "workflow"})})
    asyncio.run(fake.client().enable_pages("site"))
    assert [c[0] for c in fake.calls] == ["GET"]


def test_allow_environment_branches_skips_existing():
    fake = FakeGitHub({
        ("PUT", "/repos/octo/site/environments/github-pages"): (200, {}),
        ("POST", "/repos/octo/site/environments/github-pages/deployment-branch-policies"): (422, {}),
    })
    assert asyncio.run(fake.client().allow_environment_branches("site", ["main", "dev"])) == []
    env = fake.calls[0][3]
    assert env["deployment_branch_policy"] == {"protected_branches": False, "custom_branch_policies": True}
    assert [c[3]["name"] for c in fake.calls[1:]] == ["main", "dev"]


def test_set_workflow_permissions_and_auth_header():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    gh = GitHub("tok", "octo", transport=httpx.MockTransport(handler))
    asyncio.run(gh.set_workflow_permissions("site"))
    assert seen == {"auth": "Bearer tok", "body": {"default_workflow_permissions": "write"}}


def test_create_repo_if_missing():
    fake = FakeGitHub({("POST", "/user/repos"): (201, {"name": "site"})})
    assert asyncio.run(fake.client().create_repo_if_missing("site", "demo")) is True
    assert fake.calls[-1][3]["auto_init"] is True
