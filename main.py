import os, asyncio, json, logging
from flask import Flask, request, jsonify, Response
import httpx
from pydantic import BaseModel, HttpUrl, ValidationError, field_validator, model_validator
from typing import List, Optional
from server.utils import verify_secret, backoff, check_ref, publish_target, split_branches, UnsafeRefError
from server.files import render_pages_workflow, render_guide, GUIDE_PATH
from server.github import GitHub
import threading
from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")

SERVER_SECRET = os.getenv("SERVER_SECRET")
GITHUB_TOKEN  = os.getenv("GITHUB_TOKEN")
GITHUB_USER   = os.getenv("GITHUB_USER")
ROOT_BRANCH   = os.getenv("PAGES_ROOT_BRANCH", "main")
BRANCHES      = split_branches(os.getenv("PAGES_BRANCHES", "main,dev,test"))


def default_branches_ok(branches, root_branch) -> bool:
    if root_branch in branches: return True
    logging.getLogger(__name__).warning(
        "PAGES_ROOT_BRANCH %r is not in PAGES_BRANCHES %r; /publish needs explicit branches", root_branch, branches)
    return False

default_branches_ok(BRANCHES, ROOT_BRANCH)


# -------- Pydantic models --------
class PublishRequest(BaseModel):
    secret: str
    repo: str
    branches: List[str] = BRANCHES
    root_branch: str = ROOT_BRANCH
    description: str = ""
    callback_url: Optional[HttpUrl] = None
    notify_url: Optional[HttpUrl] = None

    @field_validator("branches")
    @classmethod
    def _safe_branches(cls, v):
        if not v: raise ValueError("at least one branch is required")
        for b in v: check_ref(b)
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _root_listed(self):
        if self.root_branch not in self.branches:
            raise ValueError(f"root_branch {self.root_branch!r} must be one of branches")
        return self

app = Flask(__name__)

@app.get("/health")
def health():
    ok = bool(SERVER_SECRET and GITHUB_TOKEN and GITHUB_USER)
    return jsonify({"ok": ok, "vars": {"SERVER_SECRET": bool(SERVER_SECRET),
                                       "GITHUB_TOKEN": bool(GITHUB_TOKEN),
                                       "GITHUB_USER": bool(GITHUB_USER)}}), 200 if ok else 500

@app.get("/")
def index():
    return jsonify({"status": "ok"}), 200

@app.get("/resolve")
def resolve():
    ref = request.args.get("ref")
    repo = request.args.get("repo")
    if not ref or not repo:
        return jsonify({"error": "ref and repo are required"}), 400
    owner = request.args.get("owner") or GITHUB_USER or ""
    try:
        target = publish_target(owner, repo, ref, request.args.get("root_branch", ROOT_BRANCH))
    except UnsafeRefError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(target.model_dump()), 200

@app.get("/workflow")
def workflow():
    branches = split_branches(request.args.get("branches", "")) or BRANCHES
    try:
        text = render_pages_workflow(branches, request.args.get("root_branch", ROOT_BRANCH),
                                     request.args.get("notify_url"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return Response(text, mimetype="text/yaml")

@app.post("/completed")
def completed():
    payload = request.get_json(force=True, silent=True) or {}
    app.logger.info("Received completion notification: %s", json.dumps(payload))
    return jsonify({"status": "noted"}), 200

@app.post("/publish")
def publish():
    try:
        data = PublishRequest(**(request.get_json(force=True, silent=True) or {}))
    except (ValidationError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    if not verify_secret(data.secret, SERVER_SECRET):
        return jsonify({"error": "forbidden"}), 403

    targets = [publish_target(GITHUB_USER or "", data.repo, b, data.root_branch) for b in data.branches]

    # Respond immediately
    response = jsonify({"repo": data.repo, "targets": [t.model_dump() for t in targets]})

    # Run background processing in a thread
    threading.Thread(target=asyncio.run, args=(run_publish(data),), daemon=True).start()

    return response, 202


async def run_publish(req: PublishRequest):
    try:
        await handle_publish(req)
    except Exception:
        app.logger.exception("publishing %s failed", req.repo)


async def handle_publish(req: PublishRequest, gh: Optional[GitHub] = None) -> dict:
    gh = gh or GitHub(GITHUB_TOKEN, GITHUB_USER)
    repo = req.repo
    await gh.create_repo_if_missing(repo, description=req.description)

    await gh.enable_pages(repo)
    await gh.set_workflow_permissions(repo)
    await gh.allow_environment_branches(repo, req.branches)

    content = render_pages_workflow(req.branches, req.root_branch,
                                    str(req.notify_url) if req.notify_url else None)
    # root branch first, cut from the repo's default branch; the others are cut from the root
    default = await gh.default_branch(repo)
    ordered = [req.root_branch] + [b for b in req.branches if b != req.root_branch]
    commits = {}
    for branch in ordered:
        if branch != default:
            await gh.ensure_branch(repo, branch,
                                   from_branch=default if branch == req.root_branch else req.root_branch)
        commits[branch] = await gh.ensure_pages_workflow(repo, branch, content)
        app.logger.info("workflow in %s@%s: %s", repo, branch, commits[branch][:7])

    guide = render_guide(gh.owner, repo, req.branches, req.root_branch)
    commits[req.root_branch] = await gh.put_file(repo, GUIDE_PATH, guide, "docs: add publishing guide",
                                                 branch=req.root_branch)

    summary = {"repo": repo, "repo_url": f"https://github.com/{gh.owner}/{repo}",
               "commits": commits,
               "targets": [publish_target(gh.owner, repo, b, req.root_branch).model_dump() for b in req.branches]}

    if req.callback_url:
        async def ping():
            try:
                async with httpx.AsyncClient(timeout=10) as client:
                    r = await client.post(str(req.callback_url), json=summary,
                                          headers={"Content-Type": "application/json"})
                    return r.status_code == 200
            except httpx.HTTPError as e:
                app.logger.warning("callback to %s failed: %s", req.callback_url, e)
                return False

        delivered = await backoff(ping, max_tries=8)
        if not delivered:
            app.logger.warning("gave up notifying %s", req.callback_url)
    return summary
