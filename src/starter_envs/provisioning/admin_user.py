"""Admin IAM user provisioning in the management account.

When provisioning runs with root credentials, an admin IAM user named
``{project}-admin`` is created (or adopted) so that cross-account role
assumption, which root cannot perform, has an IAM identity to run as.
"""

import logging
from typing import Optional
from botocore.exceptions import ClientError

from starter_envs.core.errors import CredentialRetrievalImpossible, UnmanagedIdentityConflict
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import AdminUserResult, AWSCredentials
from starter_envs.core.retry import RetryPolicy
from starter_envs.core.state import StateStore
from starter_envs.provisioning.iam_users import IAMUserError, IAMUserManager


logger = logging.getLogger(__name__)

STAGE = "admin-user"
ADMIN_USER_PATH = "/admin/"
ADMIN_POLICY_ARN = "arn:aws:iam::aws:policy/AdministratorAccess"


def admin_user_name(project_name: str) -> str:
    return f"{project_name}-admin"


class AdminIdentityProvisioner:
    """Creates or adopts the management account admin user.

    Lookup -> (not found) create, attach AdministratorAccess, issue key
           -> (found) verify ManagedBy tag, require zero keys, issue key

    The user name and access key id are recorded in the state file before
    returning; the secret stays in memory for the current run only.
    """

    def __init__(self, iam_users: IAMUserManager, state_store: StateStore,
                 retry_policy: Optional[RetryPolicy] = None,
                 reporter: Reporter = null_reporter) -> None:
        """Initialize admin user provisioner.

        Args:
            iam_users: IAM user manager for the management account
            state_store: Persistence adapter for the state file
            retry_policy: Retry policy for access key issuance
            reporter: Progress event sink
        """
        self.iam_users = iam_users
        self.state_store = state_store
        self.retry_policy = (retry_policy or RetryPolicy()).with_retryable(ClientError)
        self.reporter = reporter

    def provision(self, project_name: str) -> AdminUserResult:
        """Create or adopt the admin user and issue its access key.

        Args:
            project_name: Project name used for the user name

        Returns:
            AdminUserResult with in-memory credentials

        Raises:
            UnmanagedIdentityConflict: When the user exists without our tag
            CredentialRetrievalImpossible: When the user already has keys
        """
        user_name = admin_user_name(project_name)

        if self.iam_users.user_exists(user_name):
            credentials = self._adopt(user_name)
            adopted = True
        else:
            credentials = self._create(user_name)
            adopted = False

        self.state_store.record_admin_user(user_name, credentials.access_key_id)
        self._report(
            EventStatus.SUCCEEDED,
            f"Admin user {user_name} ready ({'adopted' if adopted else 'created'})",
        )
        return AdminUserResult(user_name=user_name, credentials=credentials, adopted=adopted)

    def _adopt(self, user_name: str) -> AWSCredentials:
        if not self.iam_users.is_managed_by_tool(user_name):
            raise UnmanagedIdentityConflict(user_name)

        try:
            key_count = self.iam_users.get_access_key_count(user_name)
        except ClientError as e:
            raise IAMUserError(f"Failed to list access keys for {user_name}: {e}")
        if key_count >= 1:
            raise CredentialRetrievalImpossible(user_name, key_count)

        self._report(EventStatus.INFO, f"Adopting existing admin user: {user_name}")
        return self._issue_key(user_name, "access key creation")

    def _create(self, user_name: str) -> AWSCredentials:
        self._report(EventStatus.STARTED, f"Creating admin user: {user_name}")
        self.iam_users.create_user(user_name, ADMIN_USER_PATH, "CLI Admin")
        self.iam_users.attach_user_policy(user_name, ADMIN_POLICY_ARN)
        self._report(EventStatus.INFO, "Attached AdministratorAccess policy")
        # new users are not immediately visible to CreateAccessKey
        return self._issue_key(user_name, "access key creation after user creation")

    def _issue_key(self, user_name: str, description: str) -> AWSCredentials:
        try:
            return self.retry_policy.call(
                self.iam_users.create_access_key, user_name, description=description
            )
        except ClientError as e:
            raise IAMUserError(f"Failed to create access key for {user_name}: {e}")

    def _report(self, status: EventStatus, detail: str) -> None:
        logger.info(detail)
        self.reporter(ProgressEvent(STAGE, status, detail))
