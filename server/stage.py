"""Stage a checkout for publishing the same way the Pages workflow does on the runner.

    python -m server.stage dev --src path/to/checkout
"""
import argparse, logging, shutil, subprocess
from pathlib import Path
from .utils import resolve_publish_path, UnsafeRefError

log = logging.getLogger(__name__)

METADATA_DIR = ".github"

def tracked_files(src: Path) -> list[str]:
    """Relative paths to copy: `git ls-files` in a checkout, every file otherwise."""
    if (src / ".git").exists():
        out = subprocess.run(["git", "ls-files", "-z"], cwd=src, check=True, capture_output=True).stdout
        return [p for p in out.decode("utf-8").split("\0") if p]
    return sorted(p.relative_to(src).as_posix() for p in src.rglob("*") if p.is_file())

def stage_tree(src, ref: str, root_branch: str = "main") -> Path:
    """Copy `src` into `src/<ref>` and return the publish root.

    The root branch is published from `src` itself and nothing is copied.
    """
    src = Path(src)
    path, is_root = resolve_publish_path(ref, root_branch)
    if is_root:
        return src
    dest = src / path
    top = path.split("/")[0]
    for part in [Path(path), *Path(path).parents]:
        if (src / part).exists() and not (src / part).is_dir():
            raise UnsafeRefError(f"ref {ref!r} collides with file {src / part}")
    dest.mkdir(parents=True, exist_ok=True)
    copied = 0
    for rel in tracked_files(src):
        if rel.split("/")[0] == top:
            continue
        if not (src / rel).is_file():
            # listed by git but deleted from the working tree
            continue
        target = dest / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src / rel, target)
        copied += 1
    for leftover in (dest / top, dest / METADATA_DIR):
        if leftover.exists():
            shutil.rmtree(leftover)
    log.info("staged %d files from %s into %s", copied, src, dest)
    return dest

def main(argv=None) -> None:
    ap = argparse.ArgumentParser(description="Stage files for a per-branch Pages publish.")
    ap.add_argument("ref")
    ap.add_argument("--src", default=".")
    ap.add_argument("--root-branch", default="main")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    dest = stage_tree(args.src, args.ref, args.root_branch)
    print(dest)

if __name__ == "__main__":
    main()
