"""Value types shared across the provisioning components."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Environment(Enum):
    """Deployment environments, declared in provisioning order."""

    DEV = "dev"
    STAGE = "stage"
    PROD = "prod"

    @classmethod
    def ordered(cls) -> List["Environment"]:
        """Get environments in provisioning order (dev, stage, prod)."""
        return list(cls)

    @classmethod
    def parse(cls, name: str) -> "Environment":
        """Parse an environment name.

        Args:
            name: Environment name (e.g., 'dev')

        Returns:
            Matching Environment member

        Raises:
            ValueError: When name is not a known environment
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            valid = ", ".join(env.value for env in cls)
            raise ValueError(
                f"Invalid environment: {name}. Valid environments: {valid}"
            )

    @property
    def display_name(self) -> str:
        """Human readable name used for CI environment scopes."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: Dict[Environment, str] = {
    Environment.DEV: "Development",
    Environment.STAGE: "Staging",
    Environment.PROD: "Production",
}


@dataclass(frozen=True)
class AWSCredentials:
    """AWS credential triple; session_token is set for temporary credentials."""

    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None

    def as_session_kwargs(self) -> Dict[str, str]:
        """Get keyword arguments for ``boto3.Session``."""
        kwargs = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs

    def as_environment(self) -> Dict[str, str]:
        """Get the credentials as AWS CLI environment variables."""
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        return env

    def __repr__(self) -> str:
        return f"AWSCredentials(access_key_id={self.access_key_id!r}, secret_access_key='***')"


@dataclass(frozen=True)
class CallerIdentity:
    """Identity behind the currently active credentials."""

    arn: str
    account_id: str
    user_id: str
    is_root: bool


@dataclass(frozen=True)
class AdminUserResult:
    """Outcome of admin user provisioning."""

    user_name: str
    credentials: AWSCredentials
    adopted: bool


@dataclass(frozen=True)
class DeploymentCredentials:
    """Access key issued to an environment's deployment user."""

    user_name: str
    access_key_id: str
    secret_access_key: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "userName": self.user_name,
            "accessKeyId": self.access_key_id,
            "secretAccessKey": self.secret_access_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "DeploymentCredentials":
        return cls(
            user_name=data["userName"],
            access_key_id=data["accessKeyId"],
            secret_access_key=data["secretAccessKey"],
        )

    def __repr__(self) -> str:
        return (
            f"DeploymentCredentials(user_name={self.user_name!r}, "
            f"access_key_id={self.access_key_id!r}, secret_access_key='***')"
        )
