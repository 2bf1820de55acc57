"""Cross-account access via STS role assumption.

Exchanges base credentials (the caller's ambient session or the admin
user's keys) for short-lived credentials inside a member account by
assuming the role AWS Organizations creates in every new account.
"""

import logging
import time
from typing import Optional
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.models import AWSCredentials


logger = logging.getLogger(__name__)

CROSS_ACCOUNT_ROLE_NAME = "OrganizationAccountAccessRole"
SESSION_DURATION_SECONDS = 900
SESSION_NAME_PREFIX = "create-aws-project"


class AssumeRoleFailed(ProvisioningError):
    """Raised when the cross-account role cannot be assumed."""

    def __init__(self, account_id: str, reason: str) -> None:
        self.account_id = account_id
        self.reason = reason
        super().__init__(
            f"Failed to assume {CROSS_ACCOUNT_ROLE_NAME} in account {account_id}: {reason}"
        )


def role_arn_for(account_id: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{CROSS_ACCOUNT_ROLE_NAME}"


class CrossAccountAccessBroker:
    """Produces account-scoped temporary credentials.

    Stateless: the result depends only on the base credentials and the
    target account id. Newly created accounts may not have propagated the
    role yet, so callers retry ``AssumeRoleFailed`` with a RetryPolicy.
    """

    def __init__(self, aws_client: AWSClientManager) -> None:
        """Initialize access broker.

        Args:
            aws_client: Manager for the caller's ambient credentials
        """
        self.aws_client = aws_client

    def _base_client_manager(self, base_credentials: Optional[AWSCredentials]) -> AWSClientManager:
        if base_credentials is None:
            return self.aws_client
        return self.aws_client.with_credentials(base_credentials)

    def assume(self, account_id: str,
               base_credentials: Optional[AWSCredentials] = None) -> AWSCredentials:
        """Assume the cross-account role in a member account.

        Args:
            account_id: Target member account id
            base_credentials: Credentials to assume from; ambient when None

        Returns:
            Temporary credentials scoped to the account

        Raises:
            AssumeRoleFailed: When the role is missing or denies assumption
        """
        sts_client = self._base_client_manager(base_credentials).get_client("sts")
        try:
            response = sts_client.assume_role(
                RoleArn=role_arn_for(account_id),
                RoleSessionName=f"{SESSION_NAME_PREFIX}-{int(time.time() * 1000)}",
                DurationSeconds=SESSION_DURATION_SECONDS,
            )
        except ClientError as e:
            raise AssumeRoleFailed(account_id, e.response['Error'].get('Message', str(e)))

        credentials = response.get("Credentials", {})
        if not (credentials.get("AccessKeyId") and credentials.get("SecretAccessKey")
                and credentials.get("SessionToken")):
            raise AssumeRoleFailed(account_id, "no temporary credentials returned")

        logger.info(f"Assumed {CROSS_ACCOUNT_ROLE_NAME} in {account_id}")
        return AWSCredentials(
            access_key_id=credentials["AccessKeyId"],
            secret_access_key=credentials["SecretAccessKey"],
            session_token=credentials["SessionToken"],
        )

    def client_manager_for(self, account_id: str,
                           base_credentials: Optional[AWSCredentials] = None) -> AWSClientManager:
        """Get an AWSClientManager bound to the member account."""
        return self.aws_client.with_credentials(self.assume(account_id, base_credentials))
