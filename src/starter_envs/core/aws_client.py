"""Centralized AWS client management with session handling.

This module provides a centralized way to manage AWS clients for one set
of credentials, either the ambient profile/environment credentials or an
explicit credential triple obtained during provisioning (admin user keys,
assumed-role credentials).
"""

from typing import Dict, Optional
import boto3

from starter_envs.core.models import AWSCredentials


DEFAULT_REGION = "us-east-1"


class AWSClientManager:
    """AWS client management bound to a single boto3 session.

    Clients are cached per service and region. A manager created with
    explicit credentials never reads the ambient credential chain.
    """

    def __init__(self, profile_name: Optional[str] = None,
                 region_name: Optional[str] = None,
                 credentials: Optional[AWSCredentials] = None) -> None:
        """Initialize AWS client manager.

        Args:
            profile_name: Optional AWS profile name for credentials
            region_name: Optional default region for clients
            credentials: Optional explicit credentials (overrides profile)
        """
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, object] = {}
        self._profile_name = profile_name
        self._region_name = region_name
        self._credentials = credentials

    @property
    def credentials(self) -> Optional[AWSCredentials]:
        """Explicit credentials this manager is bound to, if any."""
        return self._credentials

    def _get_session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            if self._credentials is not None:
                self._session = boto3.Session(
                    region_name=self._region_name,
                    **self._credentials.as_session_kwargs()
                )
            elif self._profile_name:
                self._session = boto3.Session(
                    profile_name=self._profile_name,
                    region_name=self._region_name,
                )
            else:
                self._session = boto3.Session(region_name=self._region_name)
        return self._session

    def get_client(self, service_name: str, region_name: Optional[str] = None):
        """Get AWS service client.

        Args:
            service_name: AWS service name (e.g., 'organizations', 'iam')
            region_name: Optional region; defaults to the manager's region

        Returns:
            Configured boto3 client for the service and region
        """
        region = region_name or self.get_current_region()
        client_key = f"{service_name}_{region}"

        if client_key not in self._clients:
            session = self._get_session()
            self._clients[client_key] = session.client(
                service_name, region_name=region
            )

        return self._clients[client_key]

    def get_current_region(self) -> str:
        """Get current AWS region.

        Returns:
            Current AWS region name
        """
        if self._region_name:
            return self._region_name
        session = self._get_session()
        return session.region_name or DEFAULT_REGION

    def with_credentials(self, credentials: AWSCredentials) -> "AWSClientManager":
        """Get a new manager bound to explicit credentials in the same region.

        Args:
            credentials: Credentials for the new manager

        Returns:
            New AWSClientManager instance
        """
        return AWSClientManager(
            region_name=self.get_current_region(),
            credentials=credentials,
        )

    def clear_cache(self) -> None:
        """Clear cached clients to force recreation."""
        self._clients.clear()
