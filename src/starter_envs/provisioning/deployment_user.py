"""Per-environment deployment users for CI/CD.

Each environment account gets an IAM user ``{project}-{env}-deploy`` with a
least-privilege CDK deployment policy and an access key that CI uses to
deploy. All calls run inside the member account through the
cross-account access broker.
"""

import logging
from typing import Any, Callable, Dict, Optional
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import UnmanagedIdentityConflict
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import AWSCredentials, DeploymentCredentials, Environment
from starter_envs.core.retry import RetryPolicy
from starter_envs.core.state import ProvisioningState, StateStore
from starter_envs.provisioning.cross_account import AssumeRoleFailed, CrossAccountAccessBroker
from starter_envs.provisioning.iam_users import (
    IAMUserError,
    IAMUserManager,
    PolicyAlreadyExistsError,
)


logger = logging.getLogger(__name__)

STAGE = "deployment-user"
DEPLOYMENT_USER_PATH = "/deployment/"


def deployment_user_name(project_name: str, environment: Environment) -> str:
    return f"{project_name}-{environment.value}-deploy"


def deployment_policy_name(project_name: str, environment: Environment) -> str:
    return f"{project_name}-{environment.value}-cdk-deploy"


def policy_arn_for(account_id: str, policy_name: str) -> str:
    return f"arn:aws:iam::{account_id}:policy/{policy_name}"


def cdk_deployment_policy(account_id: str) -> Dict[str, Any]:
    """Build the CDK deployment policy document scoped to an account.

    Args:
        account_id: AWS account ID used in resource ARNs

    Returns:
        IAM policy document
    """
    return {
        'Version': '2012-10-17',
        'Statement': [
            {
                'Sid': 'CloudFormationFullAccess',
                'Effect': 'Allow',
                'Action': 'cloudformation:*',
                'Resource': '*',
            },
            {
                'Sid': 'CDKBootstrapBucket',
                'Effect': 'Allow',
                'Action': 's3:*',
                'Resource': [
                    f'arn:aws:s3:::cdk-*-assets-{account_id}-*',
                    f'arn:aws:s3:::cdk-*-assets-{account_id}-*/*',
                ],
            },
            {
                'Sid': 'CDKRoleAssumption',
                'Effect': 'Allow',
                'Action': ['iam:PassRole', 'sts:AssumeRole'],
                'Resource': [f'arn:aws:iam::{account_id}:role/cdk-*'],
            },
            {
                'Sid': 'SSMContextLookup',
                'Effect': 'Allow',
                'Action': 'ssm:GetParameter',
                'Resource': f'arn:aws:ssm:*:{account_id}:parameter/cdk-bootstrap/*',
            },
            {
                'Sid': 'LambdaDeployment',
                'Effect': 'Allow',
                'Action': 'lambda:*',
                'Resource': '*',
            },
            {
                'Sid': 'APIGatewayDeployment',
                'Effect': 'Allow',
                'Action': 'apigateway:*',
                'Resource': '*',
            },
            {
                'Sid': 'DynamoDBDeployment',
                'Effect': 'Allow',
                'Action': 'dynamodb:*',
                'Resource': '*',
            },
            {
                'Sid': 'CloudFrontDeployment',
                'Effect': 'Allow',
                'Action': 'cloudfront:*',
                'Resource': '*',
            },
            {
                'Sid': 'CognitoDeployment',
                'Effect': 'Allow',
                'Action': 'cognito-idp:*',
                'Resource': '*',
            },
            {
                'Sid': 'ECRAccess',
                'Effect': 'Allow',
                'Action': [
                    'ecr:GetAuthorizationToken',
                    'ecr:BatchCheckLayerAvailability',
                    'ecr:GetDownloadUrlForLayer',
                    'ecr:BatchGetImage',
                ],
                'Resource': '*',
            },
            {
                'Sid': 'S3ListBuckets',
                'Effect': 'Allow',
                'Action': 's3:ListAllMyBuckets',
                'Resource': '*',
            },
            {
                'Sid': 'AccessWebBucket',
                'Effect': 'Allow',
                'Action': ['s3:*'],
                'Resource': [
                    f'arn:aws:s3:::*-development-web-{account_id}',
                    f'arn:aws:s3:::*-development-web-{account_id}/*',
                ],
            },
        ],
    }


class DeploymentIdentityProvisioner:
    """Creates or adopts an environment's deployment user and issues its key.

    Steps: create-or-adopt user, reuse-or-create policy, attach policy,
    issue access key. The user name is persisted after the first step and
    the credentials after the last; an environment whose credentials are
    already recorded is skipped without touching AWS.
    """

    def __init__(self, broker: CrossAccountAccessBroker, state_store: StateStore,
                 retry_policy: Optional[RetryPolicy] = None,
                 reporter: Reporter = null_reporter,
                 iam_factory: Callable[[AWSClientManager], IAMUserManager] = IAMUserManager) -> None:
        """Initialize deployment user provisioner.

        Args:
            broker: Cross-account access broker
            state_store: Persistence adapter for the state file
            retry_policy: Retry policy for role assumption and key issuance
            reporter: Progress event sink
            iam_factory: Builds an IAMUserManager for a member account
        """
        self.broker = broker
        self.state_store = state_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.reporter = reporter
        self.iam_factory = iam_factory

    def provision(self, state: ProvisioningState, environment: Environment,
                  account_id: str,
                  base_credentials: Optional[AWSCredentials] = None) -> DeploymentCredentials:
        """Ensure the environment's deployment user has recorded credentials.

        Args:
            state: Current provisioning state
            environment: Target environment
            account_id: Environment account id
            base_credentials: Admin credentials to chain through, if any

        Returns:
            Deployment credentials (recorded or newly issued)

        Raises:
            AssumeRoleFailed: When the account cannot be accessed after retries
            UnmanagedIdentityConflict: When the user exists without our tag
        """
        recorded = state.deployment_credentials.get(environment)
        if recorded is not None:
            self._report(
                EventStatus.SKIPPED,
                f"{environment.value}: credentials for {recorded.user_name} already recorded",
            )
            return recorded

        self._report(
            EventStatus.STARTED,
            f"Creating deployment user for {environment.value} ({account_id})",
        )
        account_client = self.retry_policy.with_retryable(AssumeRoleFailed).call(
            self.broker.client_manager_for,
            account_id,
            base_credentials,
            description=f"role assumption in {account_id}",
        )
        iam_users = self.iam_factory(account_client)

        user_name = deployment_user_name(state.project_name, environment)
        self._create_or_adopt_user(iam_users, user_name)
        self.state_store.record_deployment_user(environment, user_name)

        policy_name = deployment_policy_name(state.project_name, environment)
        policy_arn = self._ensure_policy(iam_users, policy_name, account_id)
        iam_users.attach_user_policy(user_name, policy_arn)
        self._report(EventStatus.INFO, f"Attached policy to user {user_name}")

        try:
            key = self.retry_policy.with_retryable(ClientError).call(
                iam_users.create_access_key,
                user_name,
                description="deployment access key creation",
            )
        except ClientError as e:
            raise IAMUserError(f"Failed to create access key for {user_name}: {e}")
        credentials = DeploymentCredentials(
            user_name=user_name,
            access_key_id=key.access_key_id,
            secret_access_key=key.secret_access_key,
        )
        self.state_store.record_deployment_credentials(environment, credentials)

        self._report(
            EventStatus.SUCCEEDED,
            f"Deployment user {user_name} ready with credentials",
        )
        return credentials

    def _create_or_adopt_user(self, iam_users: IAMUserManager, user_name: str) -> None:
        if iam_users.user_exists(user_name):
            if not iam_users.is_managed_by_tool(user_name):
                raise UnmanagedIdentityConflict(user_name)
            self._report(EventStatus.INFO, f"Adopting existing deployment user: {user_name}")
            return

        iam_users.create_user(user_name, DEPLOYMENT_USER_PATH, "CDK Deployment")
        self._report(EventStatus.INFO, f"Created IAM user: {user_name}")

    def _ensure_policy(self, iam_users: IAMUserManager, policy_name: str,
                       account_id: str) -> str:
        expected_arn = policy_arn_for(account_id, policy_name)
        if iam_users.policy_exists(expected_arn):
            self._report(EventStatus.INFO, f"Policy {policy_name} already exists, reusing")
            return expected_arn

        environment_label = policy_name[:-len('-cdk-deploy')]
        try:
            policy_arn = iam_users.create_policy(
                policy_name,
                cdk_deployment_policy(account_id),
                f"CDK deployment policy for {environment_label}",
            )
        except PolicyAlreadyExistsError:
            return expected_arn
        self._report(EventStatus.INFO, f"Created policy: {policy_name}")
        return policy_arn

    def _report(self, status: EventStatus, detail: str) -> None:
        logger.info(detail)
        self.reporter(ProgressEvent(STAGE, status, detail))
