"""Environment provisioning orchestration.

This module provides the ProvisioningOrchestrator class that sequences a
full provisioning run: caller identity detection, admin user (root callers
only), organization and environment accounts, deployment users, and the
optional CDK bootstrap. Every step checks the state file and AWS before
acting, so an interrupted run resumes where it stopped.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional
from botocore.exceptions import BotoCoreError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import AdminCredentialsUnavailable, ProvisioningError
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import (
    AdminUserResult,
    AWSCredentials,
    CallerIdentity,
    DeploymentCredentials,
    Environment,
)
from starter_envs.core.retry import RetryPolicy
from starter_envs.core.state import ProvisioningState, StateStore
from starter_envs.provisioning.accounts import AccountProvisioner, EmailResolver
from starter_envs.provisioning.admin_user import AdminIdentityProvisioner
from starter_envs.provisioning.cdk_bootstrap import CDKBootstrapper
from starter_envs.provisioning.cross_account import CrossAccountAccessBroker
from starter_envs.provisioning.deployment_user import DeploymentIdentityProvisioner
from starter_envs.provisioning.iam_users import IAMUserManager
from starter_envs.provisioning.identity import IdentityDetector, IdentityResolutionError


logger = logging.getLogger(__name__)


@dataclass
class ProvisioningResult:
    """Outcome of a provisioning run."""

    identity: CallerIdentity
    admin_user: Optional[AdminUserResult]
    accounts: Dict[Environment, str]
    deployment_credentials: Dict[Environment, DeploymentCredentials]
    state: ProvisioningState


class ProvisioningOrchestrator:
    """Orchestrates a complete, resumable provisioning run.

    Progress is reported as ProgressEvent values through the reporter.
    Failures propagate as exceptions after a FAILED event; the caller
    decides how to exit.
    """

    def __init__(self, aws_client: AWSClientManager, state_store: StateStore,
                 email_resolver: EmailResolver,
                 retry_policy: Optional[RetryPolicy] = None,
                 reporter: Reporter = null_reporter,
                 bootstrap_cdk: bool = False,
                 project_dir: Optional[str] = None) -> None:
        """Initialize the provisioning orchestrator.

        Args:
            aws_client: Client manager for the caller's ambient credentials
            state_store: Persistence adapter for the state file
            email_resolver: Supplies root emails for accounts to create
            retry_policy: Retry policy for transient failures
            reporter: Progress event sink
            bootstrap_cdk: Run cdk bootstrap in every account at the end
            project_dir: Working directory for cdk bootstrap
        """
        self.aws_client = aws_client
        self.state_store = state_store
        self.email_resolver = email_resolver
        self.retry_policy = retry_policy or RetryPolicy()
        self.reporter = reporter
        self.bootstrap_cdk = bootstrap_cdk
        self.project_dir = project_dir

        self.identity_detector = IdentityDetector(aws_client)
        self.broker = CrossAccountAccessBroker(aws_client)

    def run(self) -> ProvisioningResult:
        """Run provisioning end to end.

        Returns:
            ProvisioningResult with the final state

        Raises:
            ProvisioningError: When any step fails
        """
        stage = "setup"
        try:
            stage = "state"
            state = self.state_store.load()
            self._emit(stage, EventStatus.INFO, f"Project: {state.project_name} ({state.aws_region})")

            stage = "identity"
            identity = self.identity_detector.detect()
            self._emit(stage, EventStatus.SUCCEEDED, f"Authenticated as {identity.arn}")

            stage = "admin-user"
            admin_user = self._resolve_admin_user(identity, state)
            admin_credentials = admin_user.credentials if admin_user else None

            stage = "accounts"
            accounts = self._provision_accounts(state, admin_credentials)

            stage = "deployment-user"
            credentials = self._provision_deployment_users(accounts, admin_credentials)

            if self.bootstrap_cdk:
                stage = "cdk-bootstrap"
                CDKBootstrapper(
                    self.broker,
                    retry_policy=self.retry_policy,
                    reporter=self.reporter,
                    project_dir=self.project_dir,
                ).bootstrap_all(accounts, self.aws_client.get_current_region(), admin_credentials)

            final_state = self.state_store.load()
            self._emit("setup", EventStatus.SUCCEEDED, "AWS environment setup complete")
            return ProvisioningResult(
                identity=identity,
                admin_user=admin_user,
                accounts=accounts,
                deployment_credentials=credentials,
                state=final_state,
            )

        except (ProvisioningError, BotoCoreError) as e:
            self._emit(stage, EventStatus.FAILED, str(e))
            raise

    def _resolve_admin_user(self, identity: CallerIdentity,
                            state: ProvisioningState) -> Optional[AdminUserResult]:
        """Provision the admin user when running as root."""
        if not identity.is_root:
            self._emit("admin-user", EventStatus.SKIPPED, "IAM credentials in use; no admin user needed")
            return None

        if state.admin_user is not None:
            if any(env not in state.deployment_credentials for env in Environment.ordered()):
                raise AdminCredentialsUnavailable(state.admin_user.user_name)
            self._emit(
                "admin-user",
                EventStatus.WARNING,
                f"Running as root and admin user {state.admin_user.user_name} is already "
                "recorded, but its secret key is not stored. Every environment already "
                "has credentials; configure the AWS CLI with that user's credentials "
                "for later changes.",
            )
            return None

        self._emit("admin-user", EventStatus.STARTED, "Root credentials detected; setting up admin user")
        provisioner = AdminIdentityProvisioner(
            IAMUserManager(self.aws_client),
            self.state_store,
            retry_policy=self.retry_policy,
            reporter=self.reporter,
        )
        admin_user = provisioner.provision(state.project_name)
        self._wait_for_credentials(admin_user.credentials)
        return admin_user

    def _wait_for_credentials(self, credentials: AWSCredentials) -> None:
        """Wait until newly issued keys are accepted by STS."""
        detector = IdentityDetector(self.aws_client.with_credentials(credentials))
        self.retry_policy.with_retryable(IdentityResolutionError).call(
            detector.detect, description="admin credential propagation"
        )

    def _org_client(self, admin_credentials: Optional[AWSCredentials]) -> AWSClientManager:
        if admin_credentials is None:
            return self.aws_client
        return self.aws_client.with_credentials(admin_credentials)

    def _provision_accounts(self, state: ProvisioningState,
                            admin_credentials: Optional[AWSCredentials]) -> Dict[Environment, str]:
        self._emit("accounts", EventStatus.STARTED, "Setting up organization and environment accounts")
        provisioner = AccountProvisioner(
            self._org_client(admin_credentials),
            self.state_store,
            reporter=self.reporter,
            retry_policy=self.retry_policy,
        )
        return provisioner.provision(state, self.email_resolver)

    def _provision_deployment_users(self, accounts: Dict[Environment, str],
                                    admin_credentials: Optional[AWSCredentials]
                                    ) -> Dict[Environment, DeploymentCredentials]:
        provisioner = DeploymentIdentityProvisioner(
            self.broker,
            self.state_store,
            retry_policy=self.retry_policy,
            reporter=self.reporter,
        )
        credentials = {}
        for env in Environment.ordered():
            # re-read so each environment sees what earlier steps recorded
            state = self.state_store.load()
            credentials[env] = provisioner.provision(
                state, env, accounts[env], admin_credentials
            )
        return credentials

    def _emit(self, stage: str, status: EventStatus, detail: str) -> None:
        if status == EventStatus.FAILED:
            logger.error(f"{stage}: {detail}")
        elif status == EventStatus.WARNING:
            logger.warning(f"{stage}: {detail}")
        else:
            logger.info(f"{stage}: {detail}")
        self.reporter(ProgressEvent(stage, status, detail))
