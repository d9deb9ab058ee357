"""GitHub Actions workflow dispatch — starts the external crawler fleet for a job.

Mirrors the lazy "not configured" behaviour of the other external clients:
without a token the API and scheduler still run, dispatch just raises
RuntimeError and the job waits for a manually started crawl.
"""

import logging
import uuid

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

_GITHUB_API = "https://api.github.com"


class GitHubWorkflowRunner:
    """Triggers ``workflow_dispatch`` on the crawler workflow."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(settings.github_token and settings.github_owner and settings.github_repo)

    def status(self) -> str:
        """Return 'configured' or 'not_configured' for the /status endpoint."""
        return "configured" if self.configured else "not_configured"

    async def dispatch(self, job_id: uuid.UUID, token: str) -> None:
        """Start one workflow run with the job id and its claim credential as inputs.

        Raises RuntimeError if the runner is not configured and
        httpx.HTTPStatusError if GitHub rejects the dispatch.
        """
        if not self.configured:
            raise RuntimeError("Job runner is not configured — set GITHUB_TOKEN/OWNER/REPO")

        url = (
            f"{_GITHUB_API}/repos/{settings.github_owner}/{settings.github_repo}"
            f"/actions/workflows/{settings.github_workflow}/dispatches"
        )
        headers = {
            "Authorization": f"Bearer {settings.github_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "Dormitricity-Orchestrator",  # required by the GitHub API
        }
        body = {"ref": settings.github_ref, "inputs": {"job_id": str(job_id), "token": token}}

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            resp = await client.post(url, headers=headers, json=body)
            resp.raise_for_status()

        logger.info("Dispatched crawler workflow for job %s", job_id)


# Module-level singleton used throughout the application
job_runner = GitHubWorkflowRunner()
