"""Tests for admin user provisioning."""

import pytest
from unittest.mock import Mock, patch
from botocore.exceptions import ClientError

from starter_envs.core.errors import CredentialRetrievalImpossible, UnmanagedIdentityConflict
from starter_envs.core.events import EventRecorder
from starter_envs.core.models import AWSCredentials
from starter_envs.core.retry import RetryPolicy
from starter_envs.provisioning.admin_user import (
    ADMIN_POLICY_ARN,
    AdminIdentityProvisioner,
    admin_user_name,
)
from starter_envs.provisioning.iam_users import IAMUserManager


@pytest.fixture
def iam_users():
    """Mock IAM user manager for the management account."""
    manager = Mock(spec=IAMUserManager)
    manager.create_access_key.return_value = AWSCredentials('AKIAADMIN', 'admin-secret')
    return manager


@pytest.fixture
def provisioner(iam_users, state_store):
    return AdminIdentityProvisioner(
        iam_users,
        state_store,
        retry_policy=RetryPolicy(max_retries=3, base_delay_ms=1),
        reporter=EventRecorder(),
    )


class TestAdminIdentityProvisioner:
    """Test AdminIdentityProvisioner class."""

    def test_admin_user_name(self):
        assert admin_user_name('acme') == 'acme-admin'

    def test_creates_new_user(self, provisioner, iam_users, raw_state):
        """New user gets AdministratorAccess and a recorded key id."""
        iam_users.user_exists.return_value = False

        result = provisioner.provision('acme')

        assert result.user_name == 'acme-admin'
        assert result.adopted is False
        assert result.credentials.secret_access_key == 'admin-secret'
        iam_users.create_user.assert_called_once_with('acme-admin', '/admin/', 'CLI Admin')
        iam_users.attach_user_policy.assert_called_once_with('acme-admin', ADMIN_POLICY_ARN)
        assert raw_state()['adminUser'] == {
            'userName': 'acme-admin',
            'accessKeyId': 'AKIAADMIN',
        }

    @patch('starter_envs.core.retry.time.sleep')
    def test_retries_key_creation_after_user_creation(self, mock_sleep, provisioner,
                                                      iam_users):
        """Key issuance is retried while the new user propagates."""
        iam_users.user_exists.return_value = False
        iam_users.create_access_key.side_effect = [
            ClientError({'Error': {'Code': 'NoSuchEntity'}}, 'CreateAccessKey'),
            AWSCredentials('AKIAADMIN', 'admin-secret'),
        ]

        result = provisioner.provision('acme')

        assert result.credentials.access_key_id == 'AKIAADMIN'
        assert iam_users.create_access_key.call_count == 2
        mock_sleep.assert_called_once()

    def test_adopts_tagged_user_without_keys(self, provisioner, iam_users):
        """Tagged user with no keys is adopted."""
        iam_users.user_exists.return_value = True
        iam_users.is_managed_by_tool.return_value = True
        iam_users.get_access_key_count.return_value = 0

        result = provisioner.provision('acme')

        assert result.adopted is True
        iam_users.create_user.assert_not_called()
        iam_users.create_access_key.assert_called_once_with('acme-admin')

    def test_unmanaged_user_conflict(self, provisioner, iam_users, raw_state):
        """Untagged user is never modified."""
        iam_users.user_exists.return_value = True
        iam_users.is_managed_by_tool.return_value = False

        with pytest.raises(UnmanagedIdentityConflict) as exc_info:
            provisioner.provision('acme')

        assert 'acme-admin' in str(exc_info.value)
        iam_users.create_user.assert_not_called()
        iam_users.attach_user_policy.assert_not_called()
        iam_users.create_access_key.assert_not_called()
        assert 'adminUser' not in raw_state()

    def test_existing_keys_block_adoption(self, provisioner, iam_users):
        """Existing keys cannot be re-read, so no new key is issued."""
        iam_users.user_exists.return_value = True
        iam_users.is_managed_by_tool.return_value = True
        iam_users.get_access_key_count.return_value = 1

        with pytest.raises(CredentialRetrievalImpossible) as exc_info:
            provisioner.provision('acme')

        assert exc_info.value.key_count == 1
        assert 'Security credentials' in str(exc_info.value)
        iam_users.create_access_key.assert_not_called()
