# relayci_workflow.py
# Workflow for relayci itself: tests for pushes and pull requests to main, docs published from main only.
from __future__ import annotations

from relayci import build, job, sh, uses, wf


def workflow():
    deploy = (
        build("deploy")
        .depends_on("docs")
        .only_on("main")
        .grant(pages="write", id_token="write")
        .deploys_to("github-pages", url="${{ steps.deployment.outputs.page_url }}")
        .use_action("deploy-pages@v4", name="Deploy to pages", id="deployment")
        .output("page_url", "${{ steps.deployment.outputs.page_url }}")
        .build()
    )

    return wf(
        job(
            "test",
            uses("checkout@v4"),
            uses(
                "cache@v3",
                name="Cache pip downloads",
                with_={
                    "materialize": "test -f pyproject.toml",
                    "key-files": ["pyproject.toml"],
                    "path": ["~/.cache/pip"],
                },
            ),
            sh("Install package", "pip install -e '.[test]'"),
            sh("Run pytest", "pytest -q"),
        ),
        job(
            "docs",
            uses("checkout@v4"),
            sh("Render design notes", "mkdir -p site/relayci && cp DESIGN.md SPEC_FULL.md site/relayci/"),
            uses("redirect-index@v1", name="Write redirect index", path="site", target="relayci/DESIGN.md"),
            uses("upload-pages-artifact@v3", path="site"),
            needs=["test"],
        ),
        deploy,
        name="relayci",
        on={"push": ["main"], "pull_request": ["main"]},
        env={"RELAYCI_COLOR": "always"},
    )
