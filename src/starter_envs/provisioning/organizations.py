"""AWS Organizations management for environment provisioning.

This module handles ensuring the management account belongs to an
organization, resolving the project's organizational unit, listing member
accounts, and placing accounts into the organizational unit.
"""

import logging
from typing import Any, Dict, List, Optional
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.retry import RetryPolicy, is_throttling_error


logger = logging.getLogger(__name__)


class OrganizationsError(ProvisioningError):
    """Base exception for Organizations operations."""
    pass


class OrganizationsManager:
    """Manages AWS Organizations setup for environment accounts."""

    def __init__(self, aws_client: AWSClientManager,
                 retry_policy: Optional[RetryPolicy] = None) -> None:
        """Initialize Organizations manager.

        Args:
            aws_client: Configured AWS client manager
            retry_policy: Retry policy applied to rate-limited read calls
        """
        self.aws_client = aws_client
        self.throttle_retry = (retry_policy or RetryPolicy()).with_retryable(
            ClientError, should_retry=is_throttling_error
        )
        self._org_client = None

    def _get_client(self):
        """Get Organizations client with caching.

        Returns:
            Configured Organizations client
        """
        if self._org_client is None:
            self._org_client = self.aws_client.get_client(
                'organizations',
                self.aws_client.get_current_region()
            )
        return self._org_client

    def get_organization_id(self) -> Optional[str]:
        """Get the id of the caller's organization.

        Returns:
            Organization id, or None when not in an organization

        Raises:
            OrganizationsError: When the organization cannot be described
        """
        try:
            client = self._get_client()
            response = client.describe_organization()
            return response['Organization']['Id']
        except ClientError as e:
            if e.response['Error']['Code'] == 'AWSOrganizationsNotInUseException':
                return None
            raise OrganizationsError(f"Failed to get organization info: {e}")

    def create_organization(self) -> str:
        """Create AWS Organization with all features enabled.

        Returns:
            Organization id (the existing one if already in an organization)

        Raises:
            OrganizationsError: When creation fails
        """
        try:
            client = self._get_client()
            response = client.create_organization(FeatureSet='ALL')
            organization_id = response.get('Organization', {}).get('Id')
            if not organization_id:
                raise OrganizationsError("Organization created but no ID returned")
            logger.info(f"Organization created with ID: {organization_id}")
            return organization_id

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error'].get('Message', str(e))
            if error_code == 'AlreadyInOrganizationException':
                # a concurrent setup won the race
                existing_id = self.get_organization_id()
                if existing_id:
                    return existing_id
                raise OrganizationsError(
                    "Already in organization but could not retrieve organization ID"
                )
            elif error_code == 'AccessDeniedForDependencyException':
                raise OrganizationsError(
                    "Missing required permission: iam:CreateServiceLinkedRole "
                    "for organizations.amazonaws.com"
                )
            elif error_code == 'ConstraintViolationException':
                raise OrganizationsError(
                    f"Organization creation constraint violation: {error_message}"
                )
            else:
                raise OrganizationsError(f"Failed to create organization: {error_message}")

    def ensure_organization(self) -> str:
        """Get the existing organization id or create the organization.

        Returns:
            Organization id
        """
        organization_id = self.get_organization_id()
        if organization_id:
            return organization_id
        return self.create_organization()

    def get_root_id(self) -> str:
        """Get the root ID of the organization.

        Raises:
            OrganizationsError: When unable to get root ID
        """
        try:
            client = self._get_client()
            response = client.list_roots()
            roots = response['Roots']

            if not roots:
                raise OrganizationsError("No roots found in organization")

            return roots[0]['Id']

        except ClientError as e:
            raise OrganizationsError(f"Failed to get root ID: {e}")

    def list_organizational_units(self, parent_id: str) -> List[Dict[str, Any]]:
        """List organizational units under a parent.

        Raises:
            OrganizationsError: When unable to list OUs
        """
        try:
            client = self._get_client()
            paginator = client.get_paginator('list_organizational_units_for_parent')
            units = []
            for page in paginator.paginate(ParentId=parent_id):
                units.extend(page['OrganizationalUnits'])
            return units
        except ClientError as e:
            raise OrganizationsError(f"Failed to list OUs: {e}")

    def ensure_organizational_unit(self, name: str, parent_id: str) -> str:
        """Find or create an organizational unit by name.

        Args:
            name: Name of the organizational unit
            parent_id: ID of the parent (root or OU)

        Returns:
            Organizational unit id

        Raises:
            OrganizationsError: When creation fails
        """
        for unit in self.list_organizational_units(parent_id):
            if unit['Name'] == name:
                return unit['Id']

        try:
            client = self._get_client()
            response = client.create_organizational_unit(ParentId=parent_id, Name=name)
            unit_id = response['OrganizationalUnit']['Id']
            logger.info(f"Created organizational unit {name} ({unit_id})")
            return unit_id
        except ClientError as e:
            if e.response['Error']['Code'] == 'DuplicateOrganizationalUnitException':
                for unit in self.list_organizational_units(parent_id):
                    if unit['Name'] == name:
                        return unit['Id']
            raise OrganizationsError(f"Failed to create OU '{name}': {e}")

    def list_accounts(self) -> List[Dict[str, Any]]:
        """List all accounts in the organization.

        Raises:
            OrganizationsError: When unable to list accounts
        """
        def list_all() -> List[Dict[str, Any]]:
            paginator = self._get_client().get_paginator('list_accounts')
            accounts = []
            for page in paginator.paginate():
                accounts.extend(page['Accounts'])
            return accounts

        try:
            return self.throttle_retry.call(list_all, description="account listing")
        except ClientError as e:
            raise OrganizationsError(f"Failed to list accounts: {e}")

    def get_parent_id(self, account_id: str) -> str:
        """Get the id of the account's parent (root or OU)."""
        try:
            client = self._get_client()
            response = client.list_parents(ChildId=account_id)
            return response['Parents'][0]['Id']
        except (ClientError, IndexError, KeyError) as e:
            raise OrganizationsError(f"Failed to get parent of account {account_id}: {e}")

    def move_account(self, account_id: str, source_parent_id: str,
                     destination_parent_id: str) -> None:
        """Move account between parents.

        Raises:
            OrganizationsError: When move operation fails
        """
        try:
            client = self._get_client()
            client.move_account(
                AccountId=account_id,
                SourceParentId=source_parent_id,
                DestinationParentId=destination_parent_id
            )
            logger.info(f"Moved account {account_id} to {destination_parent_id}")
        except ClientError as e:
            raise OrganizationsError(f"Failed to move account {account_id}: {e}")

    def create_account(self, name: str, email: str) -> str:
        """Submit a member account creation request.

        Never retried.

        Returns:
            Create account request id

        Raises:
            ClientError: When the request is rejected (left for the caller to translate)
            OrganizationsError: When no request id is returned
        """
        client = self._get_client()
        response = client.create_account(AccountName=name, Email=email)
        request_id = response.get('CreateAccountStatus', {}).get('Id')
        if not request_id:
            raise OrganizationsError(
                "Account creation initiated but no request ID returned"
            )
        return request_id

    def describe_create_account_status(self, request_id: str) -> Dict[str, Any]:
        """Get the status of an account creation request.

        Rate-limit errors are retried with the manager's policy.

        Returns:
            CreateAccountStatus dictionary

        Raises:
            ClientError: When the lookup fails after retries
            OrganizationsError: When no status is returned
        """
        client = self._get_client()
        response = self.throttle_retry.call(
            client.describe_create_account_status,
            CreateAccountRequestId=request_id,
            description=f"account creation status {request_id}",
        )
        status = response.get('CreateAccountStatus')
        if not status:
            raise OrganizationsError("No status returned for account creation request")
        return status
