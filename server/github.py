import httpx, base64, logging
from typing import Optional
from .files import WORKFLOW_PATH

GITHUB_API = "https://api.github.com"

log = logging.getLogger(__name__)

class GitHub:
    def __init__(self, token: str, owner: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self.owner = owner
        self.transport = transport
        self.h = {"Authorization": f"Bearer {token}",
                  "Accept": "application/vnd.github+json",
                  "X-GitHub-Api-Version": "2022-11-28",
                  "User-Agent": "branch-pages"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=20, headers=self.h, transport=self.transport)

    def _repo(self, repo: str) -> str:
        return f"{GITHUB_API}/repos/{self.owner}/{repo}"

    async def create_repo_if_missing(self, repo: str, description: str) -> bool:
        async with self._client() as client:
            r = await client.get(self._repo(repo))
            if r.status_code == 200: return False
            payload = {"name": repo, "description": description, "private": False, "auto_init": True}
            cr = await client.post(f"{GITHUB_API}/user/repos", json=payload)
            cr.raise_for_status()
            log.info("created repository %s/%s", self.owner, repo)
            return True

    async def put_file(self, repo: str, path: str, content_utf8: str, message: str, branch: Optional[str] = None) -> str:
        # GitHub Contents API wants base64 bytes
        b64 = base64.b64encode(content_utf8.encode("utf-8")).decode("ascii")
        params = {"ref": branch} if branch else None
        async with self._client() as client:
            # Check if exists to include SHA
            getr = await client.get(f"{self._repo(repo)}/contents/{path}", params=params)
            sha = getr.json().get("sha") if getr.status_code == 200 else None
            body = {"message": message, "content": b64}
            if sha: body["sha"] = sha
            if branch: body["branch"] = branch
            pr = await client.put(f"{self._repo(repo)}/contents/{path}", json=body)
            pr.raise_for_status()
            return pr.json()["commit"]["sha"]

    async def default_branch(self, repo: str) -> str:
        async with self._client() as client:
            r = await client.get(self._repo(repo))
            r.raise_for_status()
            return r.json().get("default_branch") or "main"

    async def latest_commit(self, repo: str, branch="main") -> Optional[str]:
        async with self._client() as client:
            r = await client.get(f"{self._repo(repo)}/commits", params={"sha": branch, "per_page": 1})
            if r.status_code != 200: return None
            data = r.json()
            return data[0]["sha"] if data else None

    async def ensure_branch(self, repo: str, branch: str, from_branch: str = "main") -> bool:
        async with self._client() as client:
            r = await client.get(f"{self._repo(repo)}/git/ref/heads/{branch}")
            if r.status_code == 200: return False
        sha = await self.latest_commit(repo, from_branch)
        if sha is None:
            raise RuntimeError(f"cannot branch {branch!r} from {from_branch!r}: no commits")
        async with self._client() as client:
            cr = await client.post(f"{self._repo(repo)}/git/refs", json={"ref": f"refs/heads/{branch}", "sha": sha})
            cr.raise_for_status()
        log.info("created branch %s in %s from %s@%s", branch, repo, from_branch, sha[:7])
        return True

    async def ensure_pages_workflow(self, repo: str, branch: str, content: str) -> str:
        return await self.put_file(repo, WORKFLOW_PATH, content, f"ci: add pages workflow to {branch}", branch=branch)

    async def pages_info(self, repo: str) -> Optional[dict]:
        async with self._client() as client:
            r = await client.get(f"{self._repo(repo)}/pages")
            if r.status_code == 404: return None
            r.raise_for_status()
            return r.json()

    async def enable_pages(self, repo: str) -> dict:
        """Point the Pages site at GitHub Actions, creating it if needed."""
        info = await self.pages_info(repo)
        async with self._client() as client:
            if info is None:
                r = await client.post(f"{self._repo(repo)}/pages", json={"build_type": "workflow"})
                r.raise_for_status()
                log.info("enabled pages for %s", repo)
                return r.json()
            if info.get("build_type") != "workflow":
                r = await client.put(f"{self._repo(repo)}/pages", json={"build_type": "workflow"})
                r.raise_for_status()
                log.info("switched pages source for %s to workflow", repo)
                info = {**info, "build_type": "workflow"}
        return info

    async def set_workflow_permissions(self, repo: str, level: str = "write") -> None:
        async with self._client() as client:
            r = await client.put(f"{self._repo(repo)}/actions/permissions/workflow",
                                 json={"default_workflow_permissions": level})
            r.raise_for_status()

    async def allow_environment_branches(self, repo: str, branches: list[str], environment: str = "github-pages") -> list[str]:
        """Let each branch deploy to the environment. Returns the branches that were added."""
        added = []
        async with self._client() as client:
            r = await client.put(f"{self._repo(repo)}/environments/{environment}",
                                 json={"deployment_branch_policy": {"protected_branches": False,
                                                                    "custom_branch_policies": True}})
            r.raise_for_status()
            for b in branches:
                pr = await client.post(f"{self._repo(repo)}/environments/{environment}/deployment-branch-policies",
                                       json={"name": b, "type": "branch"})
                # already present
                if pr.status_code in (409, 422): continue
                pr.raise_for_status()
                added.append(b)
        return added
