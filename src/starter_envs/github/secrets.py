"""GitHub Environment secrets for deployment credentials.

Publishes an environment's deployment access key to a GitHub Environment
(Development, Staging, Production) through the GitHub REST API. Secret
values are encrypted with a libsodium sealed box against the environment's
public key before they leave this process.
"""

import base64
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import requests
from nacl import encoding, public

from starter_envs.core.errors import ProvisioningError
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import DeploymentCredentials, Environment
from starter_envs.core.state import ProvisioningState


logger = logging.getLogger(__name__)

STAGE = "github-secrets"
GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
ACCESS_KEY_SECRET_NAME = "AWS_ACCESS_KEY_ID"
SECRET_KEY_SECRET_NAME = "AWS_SECRET_ACCESS_KEY"


class SecretsPublishError(ProvisioningError):
    """Raised when the GitHub API rejects a secrets operation."""
    pass


class CIAuthenticationFailed(SecretsPublishError):
    """Raised when the GitHub token is invalid, expired or lacks scope."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(
            f"GitHub authentication failed (HTTP {status_code}). Ensure your token "
            'is valid and has the "repo" scope for environment secrets, or '
            "generate a new token at https://github.com/settings/tokens."
        )


class MissingCredentialsError(ProvisioningError):
    """Raised when the state file has no credentials for an environment."""

    def __init__(self, environment: Environment) -> None:
        self.environment = environment
        super().__init__(
            f"No deployment credentials recorded for {environment.value}. "
            "Run setup-aws-envs first."
        )


@dataclass(frozen=True)
class GitHubRepo:
    """Repository coordinate."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


_REPO_PATTERNS = (
    re.compile(r'^https?://github\.com/([^/]+)/([^/]+)$'),
    re.compile(r'^git@github\.com:([^/]+)/([^/]+)$'),
    re.compile(r'^([^/:@\s]+)/([^/\s]+)$'),
)


def parse_github_repo(url: str) -> GitHubRepo:
    """Parse a GitHub repository URL or ``owner/repo`` shorthand.

    Supported formats:
        https://github.com/owner/repo(.git)
        git@github.com:owner/repo(.git)
        owner/repo

    Raises:
        ValueError: When the format is not recognized
    """
    clean = url.strip().rstrip('/')
    if clean.endswith('.git'):
        clean = clean[:-4]

    for pattern in _REPO_PATTERNS:
        match = pattern.match(clean)
        if match:
            return GitHubRepo(owner=match.group(1), repo=match.group(2))

    raise ValueError(
        f"Unable to parse GitHub URL: {url}. Expected formats: "
        "https://github.com/owner/repo, git@github.com:owner/repo, or owner/repo"
    )


def encrypt_secret(public_key: str, secret_value: str) -> str:
    """Encrypt a secret with a base64 libsodium public key.

    Args:
        public_key: Base64-encoded Curve25519 public key from GitHub
        secret_value: Plain text secret

    Returns:
        Base64-encoded sealed box ciphertext
    """
    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder())
    sealed_box = public.SealedBox(key)
    encrypted = sealed_box.encrypt(secret_value.encode("utf-8"))
    return base64.b64encode(encrypted).decode("utf-8")


class GitHubClient:
    """Minimal GitHub REST client for environment secrets."""

    def __init__(self, token: str, api_url: str = GITHUB_API_URL,
                 timeout: int = 30, session: Optional[requests.Session] = None) -> None:
        """Initialize the GitHub client.

        Args:
            token: Personal access token (requires 'repo' scope)
            api_url: API base URL
            timeout: Request timeout in seconds
            session: Optional preconfigured requests session
        """
        if not token:
            raise ValueError("A GitHub token is required")
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "create-aws-starter-kit",
        })

    def _request(self, method: str, path: str,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise SecretsPublishError(f"GitHub request {method} {path} failed: {e}")

        if response.status_code in (401, 403):
            raise CIAuthenticationFailed(response.status_code)
        if response.status_code >= 400:
            raise SecretsPublishError(
                f"GitHub API {method} {path} returned {response.status_code}: {response.text}"
            )

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _environment_path(repo: GitHubRepo, environment_name: str) -> str:
        return (
            f"/repos/{quote(repo.owner)}/{quote(repo.repo)}"
            f"/environments/{quote(environment_name, safe='')}"
        )

    def ensure_environment(self, repo: GitHubRepo, environment_name: str) -> None:
        """Create the environment (PUT is idempotent)."""
        self._request("PUT", self._environment_path(repo, environment_name), {})

    def get_environment_public_key(self, repo: GitHubRepo,
                                   environment_name: str) -> Tuple[str, str]:
        """Get the environment's secrets public key.

        Returns:
            Tuple of (key_id, base64 key)
        """
        data = self._request(
            "GET", f"{self._environment_path(repo, environment_name)}/secrets/public-key"
        )
        try:
            return data["key_id"], data["key"]
        except KeyError:
            raise SecretsPublishError(
                f"GitHub returned no public key for environment {environment_name}"
            )

    def put_environment_secret(self, repo: GitHubRepo, environment_name: str,
                               secret_name: str, encrypted_value: str, key_id: str) -> None:
        """Create or update an encrypted environment secret."""
        self._request(
            "PUT",
            f"{self._environment_path(repo, environment_name)}/secrets/{secret_name}",
            {"encrypted_value": encrypted_value, "key_id": key_id},
        )


class SecretsPublisher:
    """Publishes an environment's deployment credentials to GitHub."""

    def __init__(self, client: GitHubClient, reporter: Reporter = null_reporter) -> None:
        self.client = client
        self.reporter = reporter

    @staticmethod
    def credentials_for(state: ProvisioningState,
                        environment: Environment) -> DeploymentCredentials:
        """Get recorded credentials for an environment.

        Raises:
            MissingCredentialsError: When setup-aws-envs has not issued them
        """
        credentials = state.deployment_credentials.get(environment)
        if credentials is None or environment not in state.deployment_users:
            raise MissingCredentialsError(environment)
        return credentials

    def publish(self, repo: GitHubRepo, environment: Environment,
                credentials: DeploymentCredentials) -> None:
        """Publish the credential pair to the environment scope.

        Raises:
            CIAuthenticationFailed: When the token is rejected
            SecretsPublishError: When any other API call fails
        """
        environment_name = environment.display_name
        self._report(
            EventStatus.STARTED,
            f"Configuring GitHub environment {environment_name} in {repo.full_name}",
        )
        self.client.ensure_environment(repo, environment_name)
        key_id, key = self.client.get_environment_public_key(repo, environment_name)

        for secret_name, value in (
            (ACCESS_KEY_SECRET_NAME, credentials.access_key_id),
            (SECRET_KEY_SECRET_NAME, credentials.secret_access_key),
        ):
            self._report(EventStatus.INFO, f"Setting {secret_name}...")
            self.client.put_environment_secret(
                repo, environment_name, secret_name, encrypt_secret(key, value), key_id
            )

        self._report(
            EventStatus.SUCCEEDED,
            f"Credentials set for {environment_name} environment",
        )

    def _report(self, status: EventStatus, detail: str) -> None:
        logger.info(detail)
        self.reporter(ProgressEvent(STAGE, status, detail))
