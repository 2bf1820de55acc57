"""IAM user management shared by the admin and deployment user provisioners.

This module wraps the IAM calls needed to create or adopt users owned by
this tool, manage their policies, and issue access keys.
"""

import json
import logging
from typing import Any, Dict, Optional
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.models import AWSCredentials


logger = logging.getLogger(__name__)

MANAGED_BY_TAG_KEY = "ManagedBy"
MANAGED_BY_TAG_VALUE = "create-aws-starter-kit"

# AWS allows at most two access keys per IAM user
MAX_ACCESS_KEYS = 2


class IAMUserError(ProvisioningError):
    """Base exception for IAM user operations."""
    pass


class PolicyAlreadyExistsError(IAMUserError):
    """Raised when a managed policy with the requested name already exists."""
    pass


class AccessKeyLimitExceeded(IAMUserError):
    """Raised when a user already holds the maximum number of access keys."""

    def __init__(self, user_name: str) -> None:
        self.user_name = user_name
        super().__init__(
            f"IAM user {user_name} already has {MAX_ACCESS_KEYS} access keys "
            "(AWS maximum). Delete an existing key in AWS Console > IAM > Users > "
            f"{user_name} > Security credentials before retrying."
        )


class IAMUserManager:
    """Manages IAM users, policies and access keys in one account."""

    def __init__(self, aws_client: AWSClientManager) -> None:
        """Initialize IAM user manager.

        Args:
            aws_client: AWS client manager bound to the target account
        """
        self.aws_client = aws_client
        self._iam_client = None

    def _get_client(self):
        """Get IAM client with caching.

        Returns:
            Configured IAM client
        """
        if self._iam_client is None:
            self._iam_client = self.aws_client.get_client(
                'iam',
                self.aws_client.get_current_region()
            )
        return self._iam_client

    def get_user(self, user_name: str) -> Optional[Dict[str, Any]]:
        """Get IAM user details.

        Args:
            user_name: Name of the user

        Returns:
            User details dictionary or None if not found

        Raises:
            IAMUserError: When the lookup fails for another reason
        """
        try:
            client = self._get_client()
            response = client.get_user(UserName=user_name)
            return response['User']
        except ClientError as e:
            if e.response['Error']['Code'] == 'NoSuchEntity':
                return None
            raise IAMUserError(f"Failed to check user {user_name}: {e}")

    def user_exists(self, user_name: str) -> bool:
        return self.get_user(user_name) is not None

    def is_managed_by_tool(self, user_name: str) -> bool:
        """Check whether a user carries this tool's ManagedBy tag.

        Args:
            user_name: Name of the user

        Returns:
            True if the user is tagged as managed by this tool
        """
        try:
            client = self._get_client()
            paginator = client.get_paginator('list_user_tags')
            for page in paginator.paginate(UserName=user_name):
                for tag in page.get('Tags', []):
                    if (tag.get('Key') == MANAGED_BY_TAG_KEY
                            and tag.get('Value') == MANAGED_BY_TAG_VALUE):
                        return True
            return False
        except ClientError as e:
            raise IAMUserError(f"Failed to list tags for user {user_name}: {e}")

    def create_user(self, user_name: str, path: str, purpose: str) -> Dict[str, Any]:
        """Create an IAM user tagged as managed by this tool.

        Args:
            user_name: Name of the user
            path: IAM path (e.g., '/deployment/')
            purpose: Value of the Purpose tag

        Returns:
            Created user details

        Raises:
            IAMUserError: When user creation fails
        """
        try:
            client = self._get_client()
            response = client.create_user(
                UserName=user_name,
                Path=path,
                Tags=[
                    {'Key': 'Purpose', 'Value': purpose},
                    {'Key': MANAGED_BY_TAG_KEY, 'Value': MANAGED_BY_TAG_VALUE},
                ]
            )
        except ClientError as e:
            raise IAMUserError(f"Failed to create user {user_name}: {e}")
        logger.info(f"Created IAM user {user_name}")
        return response['User']

    def attach_user_policy(self, user_name: str, policy_arn: str) -> None:
        """Attach a managed policy to a user (no-op if already attached)."""
        try:
            client = self._get_client()
            client.attach_user_policy(UserName=user_name, PolicyArn=policy_arn)
        except ClientError as e:
            raise IAMUserError(f"Failed to attach {policy_arn} to {user_name}: {e}")
        logger.info(f"Attached {policy_arn} to {user_name}")

    def policy_exists(self, policy_arn: str) -> bool:
        """Check if a managed policy exists.

        Raises:
            IAMUserError: When the lookup fails for another reason
        """
        try:
            client = self._get_client()
            client.get_policy(PolicyArn=policy_arn)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] == 'NoSuchEntity':
                return False
            raise IAMUserError(f"Failed to check policy {policy_arn}: {e}")

    def create_policy(self, policy_name: str, document: Dict[str, Any],
                      description: str) -> str:
        """Create a customer managed policy tagged as managed by this tool.

        Args:
            policy_name: Name of the policy
            document: Policy document
            description: Policy description

        Returns:
            Policy ARN

        Raises:
            PolicyAlreadyExistsError: When a policy with this name exists
            IAMUserError: When policy creation fails
        """
        try:
            client = self._get_client()
            response = client.create_policy(
                PolicyName=policy_name,
                PolicyDocument=json.dumps(document),
                Description=description,
                Tags=[
                    {'Key': 'Purpose', 'Value': 'CDK Deployment'},
                    {'Key': MANAGED_BY_TAG_KEY, 'Value': MANAGED_BY_TAG_VALUE},
                ]
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'EntityAlreadyExists':
                raise PolicyAlreadyExistsError(f"Policy {policy_name} already exists")
            raise IAMUserError(f"Failed to create policy {policy_name}: {e}")

        policy_arn = response.get('Policy', {}).get('Arn')
        if not policy_arn:
            raise IAMUserError(f"Policy {policy_name} created but no ARN returned")
        logger.info(f"Created policy {policy_arn}")
        return policy_arn

    def get_access_key_count(self, user_name: str) -> int:
        """Count access keys (active and inactive) for a user.

        Raises:
            ClientError: When the IAM call fails (left unwrapped for retry)
        """
        client = self._get_client()
        paginator = client.get_paginator('list_access_keys')
        count = 0
        for page in paginator.paginate(UserName=user_name):
            count += len(page.get('AccessKeyMetadata', []))
        return count

    def create_access_key(self, user_name: str) -> AWSCredentials:
        """Create an access key for a user.

        The secret access key is only available in this response.

        Args:
            user_name: IAM user name

        Returns:
            Issued credentials

        Raises:
            AccessKeyLimitExceeded: When the user already holds two keys
            ClientError: When the IAM call fails (left unwrapped for retry)
        """
        if self.get_access_key_count(user_name) >= MAX_ACCESS_KEYS:
            raise AccessKeyLimitExceeded(user_name)

        client = self._get_client()
        response = client.create_access_key(UserName=user_name)
        access_key = response.get('AccessKey', {})
        if not access_key.get('AccessKeyId') or not access_key.get('SecretAccessKey'):
            raise IAMUserError("Access key created but credentials not returned")

        logger.info(f"Created access key for {user_name}")
        return AWSCredentials(
            access_key_id=access_key['AccessKeyId'],
            secret_access_key=access_key['SecretAccessKey'],
        )
