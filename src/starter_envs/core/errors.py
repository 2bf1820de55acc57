"""Base exception hierarchy for environment provisioning.

Every component raises a subclass of ``ProvisioningError`` so the command
line shell can report any unrecovered failure with a single handler.
"""


class ProvisioningError(Exception):
    """Base exception for all provisioning operations."""
    pass


class UnmanagedIdentityConflict(ProvisioningError):
    """Raised when an IAM user with the expected name was not created by this tool."""

    def __init__(self, user_name: str) -> None:
        self.user_name = user_name
        super().__init__(
            f'IAM user "{user_name}" exists but was not created by this tool. '
            "Delete it or use a different project name."
        )


class CredentialRetrievalImpossible(ProvisioningError):
    """Raised when an IAM user already holds keys whose secrets cannot be re-read."""

    def __init__(self, user_name: str, key_count: int) -> None:
        self.user_name = user_name
        self.key_count = key_count
        super().__init__(
            f'IAM user "{user_name}" already exists with {key_count} access key(s). '
            "This tool cannot retrieve existing secret keys. Please delete all access "
            f"keys for this user in AWS Console > IAM > Users > {user_name} > "
            "Security credentials, or provide IAM credentials directly instead of "
            "using root credentials."
        )


class AdminCredentialsUnavailable(ProvisioningError):
    """Raised when running as root while the recorded admin user's secret is gone."""

    def __init__(self, user_name: str) -> None:
        self.user_name = user_name
        super().__init__(
            f"Running as root and admin user {user_name} is already recorded, but "
            "its secret key is not stored. Member account access is impossible "
            "with root credentials; configure the AWS CLI with that user's "
            "credentials instead of root and re-run."
        )
