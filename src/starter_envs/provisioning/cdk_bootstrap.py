"""AWS CDK bootstrap for environment accounts.

Runs ``cdk bootstrap`` (through npx) inside each environment account with
cross-account credentials so the generated CDK app can deploy there.
"""

import logging
import os
import subprocess
from typing import Dict, List, Optional

from starter_envs.core.errors import ProvisioningError
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import AWSCredentials, Environment
from starter_envs.core.retry import RetryPolicy
from starter_envs.provisioning.cross_account import AssumeRoleFailed, CrossAccountAccessBroker


logger = logging.getLogger(__name__)

STAGE = "cdk-bootstrap"
EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/AdministratorAccess"


class CDKBootstrapError(ProvisioningError):
    """Raised when cdk bootstrap fails in an account."""

    def __init__(self, environment: Environment, account_id: str, output: str) -> None:
        self.environment = environment
        self.account_id = account_id
        self.output = output
        super().__init__(
            f"CDK bootstrap failed in {environment.value} account ({account_id}):\n{output}"
        )


def bootstrap_command(account_id: str, region: str) -> List[str]:
    return [
        'npx', 'cdk', 'bootstrap',
        f'aws://{account_id}/{region}',
        '--trust', account_id,
        '--cloudformation-execution-policies', EXECUTION_POLICY_ARN,
        '--require-approval', 'never',
    ]


class CDKBootstrapper:
    """Bootstraps CDK in every environment account, in environment order."""

    def __init__(self, broker: CrossAccountAccessBroker,
                 retry_policy: Optional[RetryPolicy] = None,
                 reporter: Reporter = null_reporter,
                 project_dir: Optional[str] = None) -> None:
        self.broker = broker
        self.retry_policy = (retry_policy or RetryPolicy()).with_retryable(AssumeRoleFailed)
        self.reporter = reporter
        self.project_dir = project_dir

    def bootstrap_all(self, accounts: Dict[Environment, str], region: str,
                      base_credentials: Optional[AWSCredentials] = None) -> None:
        """Bootstrap all environments that have an account.

        Raises:
            CDKBootstrapError: When bootstrap fails in any environment
        """
        for env in Environment.ordered():
            account_id = accounts.get(env)
            if not account_id:
                continue

            self._report(
                EventStatus.STARTED,
                f"Bootstrapping CDK in {env.value} account ({account_id})",
            )
            credentials = self.retry_policy.call(
                self.broker.assume, account_id, base_credentials,
                description=f"role assumption in {account_id}",
            )
            self.bootstrap_environment(env, account_id, region, credentials)
            self._report(
                EventStatus.SUCCEEDED,
                f"CDK bootstrapped in {env.value} account ({account_id})",
            )

    def bootstrap_environment(self, environment: Environment, account_id: str,
                              region: str, credentials: AWSCredentials) -> str:
        """Run cdk bootstrap in one account.

        Returns:
            Combined command output
        """
        env = dict(os.environ)
        env.pop('AWS_PROFILE', None)
        env.pop('AWS_SESSION_TOKEN', None)
        env.update(credentials.as_environment())
        env['AWS_REGION'] = region

        try:
            result = subprocess.run(
                bootstrap_command(account_id, region),
                cwd=self.project_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as e:
            raise CDKBootstrapError(environment, account_id, f"Unable to run npx: {e}")

        if result.returncode != 0:
            raise CDKBootstrapError(environment, account_id, result.stdout or "")
        logger.debug(result.stdout)
        return result.stdout or ""

    def _report(self, status: EventStatus, detail: str) -> None:
        logger.info(detail)
        self.reporter(ProgressEvent(STAGE, status, detail))
