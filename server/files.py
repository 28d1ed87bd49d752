import json
from pydantic import HttpUrl, TypeAdapter
from .utils import check_ref, branch_url, pages_url, resolve_publish_path

WORKFLOW_PATH = ".github/workflows/pages.yml"
GUIDE_PATH = "PUBLISHING.md"

_http_url = TypeAdapter(HttpUrl)

# GitHub Actions: publish every listed branch to Pages, root branch at the base URL,
# other branches under /<branch>/. Identical copy lives in each branch.
PAGES_WORKFLOW_YML = r"""name: Deploy branch to GitHub Pages
on:
  push:
    branches: [ __BRANCHES__ ]
  workflow_dispatch:
permissions:
  contents: read
  pages: write
  id-token: write
concurrency:
  group: "pages-${{ github.ref_name }}"
  cancel-in-progress: false
jobs:
  deploy:
    runs-on: ubuntu-latest
    environment:
      name: github-pages
      url: ${{ steps.deployment.outputs.page_url }}
    outputs:
      page_url: ${{ steps.deployment.outputs.page_url }}
      publish_path: ${{ steps.target.outputs.path }}
    steps:
      - name: Checkout
        uses: actions/checkout@v4
      - name: Setup Pages
        uses: actions/configure-pages@v5
      - name: Select publish path
        id: target
        env:
          REF: ${{ github.ref_name }}
          ROOT: __ROOT_BRANCH__
        run: |
          case "$REF" in
            ""|/*|*/|*//*|.*|*/.*|*\\*|*" "*) echo "Refusing to publish unsafe ref: $REF"; exit 1;;
          esac
          if [ "$REF" = "$ROOT" ]; then
            echo "path=." >> "$GITHUB_OUTPUT"
            echo "root=true" >> "$GITHUB_OUTPUT"
          else
            echo "path=$REF" >> "$GITHUB_OUTPUT"
            echo "root=false" >> "$GITHUB_OUTPUT"
          fi
      - name: Stage files
        if: steps.target.outputs.root == 'false'
        env:
          DEST: ${{ steps.target.outputs.path }}
        run: |
          mkdir -p "$DEST"
          git ls-files -z | xargs -0 -r cp --parents -t "$DEST"
          rm -rf "$DEST/${DEST%%/*}" "$DEST/.github"
      - name: Upload artifact
        uses: actions/upload-pages-artifact@v3
        with:
          path: .
      - name: Deploy
        id: deployment
        uses: actions/deploy-pages@v4
  report:
    needs: deploy
    if: always()
    runs-on: ubuntu-latest
    env:
      REF: ${{ github.ref_name }}
      RESULT: ${{ needs.deploy.result }}
      PAGE_URL: ${{ needs.deploy.outputs.page_url }}
      PUBLISH_PATH: ${{ needs.deploy.outputs.publish_path }}
    steps:
      - name: Report result
        run: |
          if [ "$PUBLISH_PATH" = "." ]; then URL="$PAGE_URL"; else URL="${PAGE_URL%/}/$PUBLISH_PATH/"; fi
          echo "URL=$URL" >> "$GITHUB_ENV"
          if [ "$RESULT" = "success" ]; then
            echo "Published $REF to $URL"
          else
            echo "Publishing $REF failed ($RESULT). Check Settings > Pages (source: GitHub Actions) and that $REF is allowed in the github-pages environment."
          fi
"""

NOTIFY_STEP_YML = r"""      - name: Notify
        env:
          NOTIFY_URL: __NOTIFY_URL__
        run: |
          curl -sS -X POST -H "Content-Type: application/json" \
            -d "{\"repo\": \"$GITHUB_REPOSITORY\", \"ref\": \"$REF\", \"result\": \"$RESULT\", \"url\": \"$URL\"}" \
            "$NOTIFY_URL" || true
"""

def render_pages_workflow(branches: list[str], root_branch: str = "main", notify_url: str | None = None) -> str:
    if not branches:
        raise ValueError("at least one branch is required")
    if root_branch not in branches:
        raise ValueError(f"root branch {root_branch!r} is not in {branches!r}")
    for b in branches:
        check_ref(b)
    # values reach the shell only through env:, quoted as YAML strings
    text = (PAGES_WORKFLOW_YML
            .replace("__BRANCHES__", ", ".join(json.dumps(b) for b in branches))
            .replace("__ROOT_BRANCH__", json.dumps(root_branch)))
    if notify_url:
        raw = str(notify_url)
        if any(c.isspace() or not c.isprintable() for c in raw):
            raise ValueError(f"notify url must not contain whitespace or control characters: {raw!r}")
        url = str(_http_url.validate_python(raw))
        if "${{" in url:
            raise ValueError(f"notify url must not contain an expression: {url!r}")
        text += NOTIFY_STEP_YML.replace("__NOTIFY_URL__", json.dumps(url))
    return text

GUIDE_TMPL = """# Publishing {repo} with GitHub Pages

Every branch listed below carries the same workflow at `{workflow_path}`.
A push to one of them builds and publishes that branch.

| Branch | Publish path | URL |
|---|---|---|
{rows}

The `{root_branch}` branch is served at the site's base URL, **{base_url}**.
Every other branch is copied into a folder named after it and served at
`{base_url}<branch>/`.

## Settings applied

- Settings > Pages > Build and deployment > Source: **GitHub Actions**.
- Settings > Actions > General > Workflow permissions: **Read and write permissions**.
- Settings > Environments > github-pages > Deployment branches: {branch_list}.

## When a publish fails

- *Permission denied / 403 in the deploy step*: check that the Pages source is
  still "GitHub Actions" and that the workflow permissions are read and write.
- *Branch not allowed to deploy to github-pages*: add the branch under
  Settings > Environments > github-pages > Deployment branches.
- *Nothing runs after a push*: the branch is missing `{workflow_path}`. Copy the
  file from `{root_branch}` into it unchanged.
- *Old content still shown*: wait a few minutes and force-reload; Pages is
  served through a CDN cache.
"""

def render_guide(owner: str, repo: str, branches: list[str], root_branch: str = "main") -> str:
    rows = []
    for b in branches:
        path, _ = resolve_publish_path(b, root_branch)
        rows.append(f"| `{b}` | `{path}` | {branch_url(owner, repo, b, root_branch)} |")
    return GUIDE_TMPL.format(
        repo=repo,
        workflow_path=WORKFLOW_PATH,
        rows="\n".join(rows),
        root_branch=root_branch,
        base_url=pages_url(owner, repo),
        branch_list=", ".join(f"`{b}`" for b in branches),
    )
