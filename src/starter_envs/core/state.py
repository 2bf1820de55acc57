"""Persistent provisioning state stored in the project's JSON config file.

The state file (``.aws-starter-config.json``) is written at project
generation time and then extended by every successful provisioning step.
Each ``record_*`` call re-reads the file from disk, merges one change and
writes it back atomically, so results recorded earlier in the same run are
never clobbered by a stale in-memory copy.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from starter_envs.core.errors import ProvisioningError
from starter_envs.core.models import DeploymentCredentials, Environment


logger = logging.getLogger(__name__)

STATE_FILE_NAME = ".aws-starter-config.json"


class StateFileError(ProvisioningError):
    """Raised when the state file is missing, unreadable or malformed."""
    pass


@dataclass(frozen=True)
class AdminUserRecord:
    """Reference to the management account admin user (never the secret)."""

    user_name: str
    access_key_id: str


@dataclass
class ProvisioningState:
    """Snapshot of the state file."""

    project_name: str
    aws_region: str
    accounts: Dict[Environment, str] = field(default_factory=dict)
    admin_user: Optional[AdminUserRecord] = None
    deployment_users: Dict[Environment, str] = field(default_factory=dict)
    deployment_credentials: Dict[Environment, DeploymentCredentials] = field(
        default_factory=dict
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisioningState":
        """Build state from the raw JSON document.

        Raises:
            StateFileError: When required fields are missing or malformed
        """
        project_name = data.get("projectName")
        if not isinstance(project_name, str) or not project_name:
            raise StateFileError("State file is missing 'projectName'")

        try:
            admin = data.get("adminUser")
            return cls(
                project_name=project_name,
                aws_region=data.get("awsRegion") or "us-east-1",
                accounts=_env_map(data.get("accounts"), str),
                admin_user=(
                    AdminUserRecord(admin["userName"], admin["accessKeyId"])
                    if admin else None
                ),
                deployment_users=_env_map(data.get("deploymentUsers"), str),
                deployment_credentials=_env_map(
                    data.get("deploymentCredentials"),
                    DeploymentCredentials.from_dict,
                ),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise StateFileError(f"State file has a malformed entry: {e}")

    def account_name(self, environment: Environment) -> str:
        """Deterministic display name of an environment's account."""
        return f"{self.project_name}-{environment.value}"


def _env_map(raw: Optional[Dict[str, Any]], convert: Callable[[Any], Any]) -> Dict[Environment, Any]:
    """Convert a JSON object keyed by environment name, skipping unknown names."""
    result = {}
    for name, value in (raw or {}).items():
        try:
            env = Environment(name)
        except ValueError:
            logger.debug(f"Ignoring unknown environment '{name}' in state file")
            continue
        result[env] = convert(value)
    return result


class StateStore:
    """Read-modify-write persistence adapter for the state file."""

    def __init__(self, path: Path) -> None:
        """Initialize state store.

        Args:
            path: Path to the JSON state file
        """
        self.path = Path(path)

    @classmethod
    def for_project(cls, project_dir: Optional[str] = None) -> "StateStore":
        """Get the store for a project directory (default: current directory)."""
        return cls(Path(project_dir or ".") / STATE_FILE_NAME)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ProvisioningState:
        """Load current state from disk.

        Returns:
            Parsed provisioning state

        Raises:
            StateFileError: When the file is missing or invalid
        """
        return ProvisioningState.from_dict(self._read_raw())

    def _read_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise StateFileError(
                f"Project config not found: {self.path}. "
                "Run this command from inside a generated project directory."
            )
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateFileError(f"Project config is not valid JSON: {self.path}: {e}")
        except IOError as e:
            raise StateFileError(f"Unable to read project config {self.path}: {e}")

        if not isinstance(data, dict):
            raise StateFileError(f"Project config must be a JSON object: {self.path}")
        return data

    def _write_raw(self, data: Dict[str, Any]) -> None:
        """Write the document atomically next to the target file."""
        directory = self.path.parent
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(directory)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            # access key secrets are stored here
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def update(self, mutate: Callable[[Dict[str, Any]], None]) -> ProvisioningState:
        """Apply a change to the current on-disk document and persist it.

        Args:
            mutate: Callable that edits the raw JSON document in place

        Returns:
            State after the change
        """
        data = self._read_raw()
        mutate(data)
        self._write_raw(data)
        return ProvisioningState.from_dict(data)

    def record_account(self, environment: Environment, account_id: str) -> ProvisioningState:
        """Record an environment's account id.

        Replacing a different id also drops the deployment user and
        credentials recorded for that environment; they belong to the old
        account.
        """
        logger.info(f"Recording {environment.value} account {account_id}")

        def mutate(data: Dict[str, Any]) -> None:
            accounts = data.setdefault("accounts", {})
            previous = accounts.get(environment.value)
            if previous and previous != account_id:
                logger.warning(
                    f"Replacing {environment.value} account {previous} with {account_id}"
                )
                for key in ("deploymentUsers", "deploymentCredentials"):
                    (data.get(key) or {}).pop(environment.value, None)
            accounts[environment.value] = account_id

        return self.update(mutate)

    def record_admin_user(self, user_name: str, access_key_id: str) -> ProvisioningState:
        logger.info(f"Recording admin user {user_name}")

        def mutate(data: Dict[str, Any]) -> None:
            data["adminUser"] = {"userName": user_name, "accessKeyId": access_key_id}

        return self.update(mutate)

    def record_deployment_user(self, environment: Environment, user_name: str) -> ProvisioningState:
        logger.info(f"Recording {environment.value} deployment user {user_name}")

        def mutate(data: Dict[str, Any]) -> None:
            data.setdefault("deploymentUsers", {})[environment.value] = user_name

        return self.update(mutate)

    def record_deployment_credentials(self, environment: Environment,
                                      credentials: DeploymentCredentials) -> ProvisioningState:
        logger.info(
            f"Recording {environment.value} access key {credentials.access_key_id}"
        )

        def mutate(data: Dict[str, Any]) -> None:
            data.setdefault("deploymentUsers", {})[environment.value] = credentials.user_name
            data.setdefault("deploymentCredentials", {})[environment.value] = (
                credentials.to_dict()
            )

        return self.update(mutate)
