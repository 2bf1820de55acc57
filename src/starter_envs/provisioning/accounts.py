"""Environment account creation and reconciliation.

This module ensures the organization and the project's organizational unit
exist, reconciles the state file against the organization's actual member
accounts, and creates the accounts that are missing, one at a time.
"""

import logging
import re
import time
from typing import Callable, Dict, List, Optional
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.events import EventStatus, ProgressEvent, Reporter, null_reporter
from starter_envs.core.models import Environment
from starter_envs.core.retry import RetryPolicy
from starter_envs.core.state import ProvisioningState, StateStore
from starter_envs.provisioning.organizations import OrganizationsError, OrganizationsManager


logger = logging.getLogger(__name__)

STAGE = "accounts"
EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

EmailResolver = Callable[[List[Environment]], Dict[Environment, str]]


class AccountCreationError(ProvisioningError):
    """Base exception for account creation operations."""
    pass


class AccountCreationFailed(AccountCreationError):
    """Raised when the provider reports account creation FAILED."""

    def __init__(self, account_name: str, reason: str) -> None:
        self.account_name = account_name
        self.reason = reason
        super().__init__(f"Account creation failed for {account_name}: {reason}")


class AccountCreationTimeout(AccountCreationError):
    """Raised when account creation does not finish in time."""

    def __init__(self, account_name: str, request_id: str, timeout: int) -> None:
        self.account_name = account_name
        self.request_id = request_id
        super().__init__(
            f"Account creation for {account_name} timed out after {timeout} seconds "
            f"(request {request_id}). If AWS finishes creating it later, re-running "
            "setup will discover the account instead of creating another."
        )


class InvalidEmailError(AccountCreationError):
    """Raised when email address is invalid or missing."""
    pass


class DuplicateEmailError(AccountCreationError):
    """Raised when the same email is requested for more than one account."""
    pass


class EmailInUseError(AccountCreationError):
    """Raised when email address already owns an account in the organization."""
    pass


def derive_environment_emails(root_email: str,
                              environments: List[Environment]) -> Dict[Environment, str]:
    """Derive per-environment emails by inserting ``-{env}`` before the domain.

    'owner@example.com' -> 'owner-dev@example.com'; plus aliases and
    subdomains are kept ('user+tag@a.b.com' -> 'user+tag-dev@a.b.com').

    Raises:
        InvalidEmailError: When root_email has no '@'
    """
    at_index = root_email.rfind('@')
    if at_index <= 0:
        raise InvalidEmailError(f"Invalid email format: {root_email}")
    local_part, domain = root_email[:at_index], root_email[at_index:]
    return {env: f"{local_part}-{env.value}{domain}" for env in environments}


class AccountProvisioner:
    """Ensures one member account per environment.

    Account names follow ``{project}-{env}``; the organization's account
    list, not the state file, decides which accounts exist. Creation
    requests are strictly sequential and each new account id is persisted
    as soon as it is known.
    """

    POLL_INTERVAL_SECONDS = 5
    CREATION_TIMEOUT_SECONDS = 300

    def __init__(self, aws_client: AWSClientManager, state_store: StateStore,
                 reporter: Reporter = null_reporter,
                 organizations: Optional[OrganizationsManager] = None,
                 retry_policy: Optional[RetryPolicy] = None) -> None:
        """Initialize account provisioner.

        Args:
            aws_client: Client manager with management account access
            state_store: Persistence adapter for the state file
            reporter: Progress event sink
            organizations: Optional Organizations manager override
            retry_policy: Retry policy for rate-limited Organizations calls
        """
        self.aws_client = aws_client
        self.state_store = state_store
        self.reporter = reporter
        self.organizations = organizations or OrganizationsManager(
            aws_client, retry_policy=retry_policy
        )

    def provision(self, state: ProvisioningState,
                  email_resolver: EmailResolver) -> Dict[Environment, str]:
        """Ensure every environment has an account.

        Args:
            state: State loaded at the start of the run
            email_resolver: Supplies root emails for the missing environments

        Returns:
            Mapping of environment to account id
        """
        organization_id = self.organizations.ensure_organization()
        self._report(EventStatus.SUCCEEDED, f"Organization ready: {organization_id}")

        root_id = self.organizations.get_root_id()
        unit_id = self.organizations.ensure_organizational_unit(state.project_name, root_id)

        existing_accounts = self.organizations.list_accounts()
        accounts = self.discover(state, existing_accounts)
        state = self._record_discovered(state, accounts)

        for env, account_id in accounts.items():
            self._place_in_unit(account_id, root_id, unit_id)

        missing = [env for env in Environment.ordered() if env not in accounts]
        if not missing:
            self._report(EventStatus.SKIPPED, "All environment accounts already exist")
            return accounts

        emails = email_resolver(missing)
        self.validate_emails(missing, emails, existing_accounts)

        for env in missing:
            account_name = state.account_name(env)
            account_id = self.create_account(account_name, emails[env])
            state = self._record_account(state, env, account_id)
            accounts[env] = account_id
            self._place_in_unit(account_id, root_id, unit_id)

        self._report(
            EventStatus.SUCCEEDED,
            f"Created {len(missing)} environment account(s)",
        )
        return {env: accounts[env] for env in Environment.ordered()}

    def discover(self, state: ProvisioningState,
                 existing_accounts: List[Dict]) -> Dict[Environment, str]:
        """Map environments to the active member accounts named for them.

        Local entries the organization does not return are reported as
        warnings and treated as missing.
        """
        by_name = {}
        for account in existing_accounts:
            if account.get('Status', 'ACTIVE') != 'ACTIVE':
                continue
            by_name[account.get('Name', '').lower()] = account['Id']

        discovered = {}
        for env in Environment.ordered():
            account_id = by_name.get(state.account_name(env).lower())
            if account_id:
                discovered[env] = account_id
            elif env in state.accounts:
                self._report(
                    EventStatus.WARNING,
                    f"Account {state.accounts[env]} recorded for {env.value} was not "
                    f"found in the organization as {state.account_name(env)}; it may "
                    "have been closed or renamed. It will be created again.",
                )
        return discovered

    def _record_discovered(self, state: ProvisioningState,
                           discovered: Dict[Environment, str]) -> ProvisioningState:
        for env, account_id in discovered.items():
            if state.accounts.get(env) != account_id:
                self._report(
                    EventStatus.INFO,
                    f"Found existing {env.value} account {account_id}",
                )
                state = self._record_account(state, env, account_id)
        return state

    def _record_account(self, state: ProvisioningState, env: Environment,
                        account_id: str) -> ProvisioningState:
        """Persist an account id, warning when it replaces one with deployment credentials."""
        previous = state.accounts.get(env)
        if previous and previous != account_id and (
                env in state.deployment_users or env in state.deployment_credentials):
            self._report(
                EventStatus.WARNING,
                f"{env.value} account changed from {previous} to {account_id}; the "
                "deployment user and credentials recorded for the old account are "
                "discarded and will be issued again.",
            )
        return self.state_store.record_account(env, account_id)

    def validate_emails(self, environments: List[Environment],
                        emails: Dict[Environment, str],
                        existing_accounts: List[Dict]) -> None:
        """Validate the requested root emails before any account is created.

        Raises:
            InvalidEmailError: When an email is missing or malformed
            DuplicateEmailError: When two environments share an email
            EmailInUseError: When an email already owns a member account
        """
        seen: Dict[str, Environment] = {}
        in_use = {account.get('Email', '').lower() for account in existing_accounts}

        for env in environments:
            email = (emails.get(env) or '').strip()
            if not email:
                raise InvalidEmailError(f"No email provided for {env.value} account")
            if not re.match(EMAIL_PATTERN, email):
                raise InvalidEmailError(f"Invalid email format: {email}")

            key = email.lower()
            if key in seen:
                raise DuplicateEmailError(
                    f"Email {email} is used for both {seen[key].value} and "
                    f"{env.value}; each account needs a unique email address"
                )
            if key in in_use:
                raise EmailInUseError(f"Email address already in use: {email}")
            seen[key] = env

    def create_account(self, name: str, email: str) -> str:
        """Create a member account and wait until it is ready.

        Args:
            name: Account display name
            email: Root user email

        Returns:
            New account id

        Raises:
            AccountCreationError: When the request is rejected
            AccountCreationFailed: When creation ends in FAILED
            AccountCreationTimeout: When creation does not finish in time
        """
        self._report(EventStatus.STARTED, f"Creating account: {name} ({email})")
        try:
            request_id = self.organizations.create_account(name, email)
        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error'].get('Message', str(e))
            if error_code == 'ConstraintViolationException':
                raise AccountCreationError(
                    f"Account creation constraint violation for {name}: {error_message}"
                )
            raise AccountCreationError(f"Account creation failed for {name}: {error_message}")
        except OrganizationsError as e:
            raise AccountCreationError(str(e))

        self._report(
            EventStatus.INFO,
            f"Request {request_id}: waiting for account creation "
            "(this may take a few minutes)",
        )
        account_id = self._wait_for_account_creation(request_id, name)
        self._report(EventStatus.SUCCEEDED, f"Account created: {name} ({account_id})")
        return account_id

    def _wait_for_account_creation(self, request_id: str, account_name: str,
                                   timeout: Optional[int] = None) -> str:
        """Poll creation status until SUCCEEDED, FAILED or timeout.

        Returns:
            Account ID when creation succeeds
        """
        timeout = timeout if timeout is not None else self.CREATION_TIMEOUT_SECONDS
        start_time = time.time()

        while time.time() - start_time < timeout:
            try:
                status = self.organizations.describe_create_account_status(request_id)
            except (ClientError, OrganizationsError) as e:
                raise AccountCreationError(
                    f"Failed to check account creation status: {e}"
                )

            state = status.get('State')
            if state == 'SUCCEEDED':
                if not status.get('AccountId'):
                    raise AccountCreationError(
                        "Account creation succeeded but no account ID returned"
                    )
                return status['AccountId']
            elif state == 'FAILED':
                raise AccountCreationFailed(
                    account_name, status.get('FailureReason', 'Unknown failure reason')
                )

            time.sleep(self.POLL_INTERVAL_SECONDS)

        raise AccountCreationTimeout(account_name, request_id, timeout)

    def _place_in_unit(self, account_id: str, root_id: str, unit_id: str) -> None:
        """Move an account from the organization root into the project OU."""
        parent_id = self.organizations.get_parent_id(account_id)
        if parent_id == root_id:
            self.organizations.move_account(account_id, root_id, unit_id)

    def _report(self, status: EventStatus, detail: str) -> None:
        if status == EventStatus.WARNING:
            logger.warning(detail)
        else:
            logger.info(detail)
        self.reporter(ProgressEvent(STAGE, status, detail))
