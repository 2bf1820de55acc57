"""Caller identity detection.

Determines whether the active credentials belong to an account's root user
or to an IAM identity. Root credentials cannot assume roles in member
accounts, so a root caller gets an admin IAM user provisioned first.
"""

import logging
from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
)

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.models import CallerIdentity


logger = logging.getLogger(__name__)

ROOT_ARN_SUFFIX = "root"


class IdentityResolutionError(ProvisioningError):
    """Raised when the caller identity cannot be resolved."""
    pass


def is_root_arn(arn: str) -> bool:
    """Check whether an ARN identifies an account root user.

    Args:
        arn: IAM ARN (e.g., 'arn:aws:iam::123456789012:root')

    Returns:
        True if the final ARN segment is the root marker
    """
    return arn.split(":")[-1] == ROOT_ARN_SUFFIX


class IdentityDetector:
    """Resolves the identity behind the active credentials."""

    def __init__(self, aws_client: AWSClientManager) -> None:
        self.aws_client = aws_client

    def detect(self) -> CallerIdentity:
        """Resolve caller identity via STS.

        Returns:
            CallerIdentity with root flag

        Raises:
            IdentityResolutionError: When credentials are missing or invalid
        """
        try:
            sts_client = self.aws_client.get_client("sts")
            response = sts_client.get_caller_identity()
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise IdentityResolutionError(
                f"AWS credentials not found or incomplete: {e}. "
                "Configure credentials with 'aws configure' or set AWS_PROFILE."
            )
        except ProfileNotFound as e:
            raise IdentityResolutionError(
                f"{e}. Configure it with 'aws configure --profile <name>'."
            )
        except ClientError as e:
            raise IdentityResolutionError(
                f"Unable to resolve AWS caller identity: {e}. "
                "Your credentials may be invalid or expired."
            )

        arn = response.get("Arn")
        account_id = response.get("Account")
        user_id = response.get("UserId")
        if not arn or not account_id or not user_id:
            raise IdentityResolutionError(
                "GetCallerIdentity returned an incomplete response"
            )

        identity = CallerIdentity(
            arn=arn,
            account_id=account_id,
            user_id=user_id,
            is_root=is_root_arn(arn),
        )
        logger.info(f"Caller identity {arn} (root={identity.is_root})")
        return identity
