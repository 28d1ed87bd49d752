import re, asyncio, hmac
from pydantic import BaseModel

ROOT_PATH = "."

class UnsafeRefError(ValueError):
    pass

class PublishTarget(BaseModel):
    ref: str
    path: str
    is_root: bool
    url: str = ""

def verify_secret(got: str, expected: str) -> bool:
    if got is None or expected is None: return False
    return hmac.compare_digest(got, expected)

# git-forbidden characters plus shell quoting and expansion
_bad_chars_re = re.compile(r"[\s\\\x00-\x1f\x7f$`'\"{}~^:?*\[]")

def check_ref(ref: str) -> str:
    """Reject refs that cannot be used as a directory below the publish root.

    Slashes are allowed and give a nested path (``feature/x``).
    """
    if not ref or _bad_chars_re.search(ref):
        raise UnsafeRefError(f"unsafe ref: {ref!r}")
    for seg in ref.split("/"):
        # covers "", ".", ".." and hidden names like ".github"
        if not seg or seg.startswith("."):
            raise UnsafeRefError(f"unsafe ref: {ref!r}")
    return ref

def resolve_publish_path(ref: str, root_branch: str = "main") -> tuple[str, bool]:
    """Map a ref to (path, is_root): the root branch publishes from ".", anything else from a same-named subdirectory."""
    if ref == root_branch:
        return ROOT_PATH, True
    return check_ref(ref), False

async def backoff(retry_fn, *, max_tries=8):
    delay = 1
    for i in range(max_tries):
        ok = await retry_fn()
        if ok: return True
        if i == max_tries - 1: break
        await asyncio.sleep(delay)
        delay = min(delay * 2, 32)
    return False

def pages_url(owner: str, repo: str) -> str:
    # user/org sites are served from the domain root
    host = f"{owner.lower()}.github.io"
    if repo.lower() == host:
        return f"https://{host}/"
    return f"https://{host}/{repo}/"

def branch_url(owner: str, repo: str, ref: str, root_branch: str = "main") -> str:
    path, is_root = resolve_publish_path(ref, root_branch)
    base = pages_url(owner, repo)
    return base if is_root else f"{base}{path}/"

def publish_target(owner: str, repo: str, ref: str, root_branch: str = "main") -> PublishTarget:
    path, is_root = resolve_publish_path(ref, root_branch)
    return PublishTarget(ref=ref, path=path, is_root=is_root,
                         url=branch_url(owner, repo, ref, root_branch))

def split_branches(raw: str) -> list[str]:
    return [b.strip() for b in (raw or "").split(",") if b.strip()]
