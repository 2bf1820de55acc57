"""Unit tests for AWS Client Manager."""

from unittest.mock import Mock, patch

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.models import AWSCredentials


class TestAWSClientManager:
    """Test cases for AWSClientManager class."""

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_session_is_lazy(self, mock_session_class):
        """No session is created until a client is requested."""
        AWSClientManager(profile_name="test-profile")
        mock_session_class.assert_not_called()

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_profile_session(self, mock_session_class):
        """Profile credentials are used when no explicit credentials are set."""
        manager = AWSClientManager(profile_name="test-profile", region_name="eu-west-1")

        manager.get_client("sts")

        mock_session_class.assert_called_once_with(
            profile_name="test-profile", region_name="eu-west-1"
        )

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_explicit_credentials_session(self, mock_session_class):
        """Explicit credentials override the profile."""
        credentials = AWSCredentials("ASIA", "secret", "token")
        manager = AWSClientManager(
            profile_name="ignored", region_name="us-east-1", credentials=credentials
        )

        manager.get_client("iam")

        mock_session_class.assert_called_once_with(
            region_name="us-east-1",
            aws_access_key_id="ASIA",
            aws_secret_access_key="secret",
            aws_session_token="token",
        )

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_get_client_caching(self, mock_session_class):
        """Test client caching functionality."""
        mock_session = Mock()
        mock_session.client.side_effect = lambda service, region_name=None: Mock(name=service)
        mock_session_class.return_value = mock_session
        manager = AWSClientManager(region_name="us-east-1")

        first = manager.get_client("organizations")
        second = manager.get_client("organizations")
        other_region = manager.get_client("organizations", "us-west-2")

        assert first is second
        assert other_region is not first
        assert mock_session.client.call_count == 2

        manager.clear_cache()
        assert manager.get_client("organizations") is not first

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_default_region(self, mock_session_class):
        """Region falls back to us-east-1 when the session has none."""
        mock_session_class.return_value.region_name = None
        assert AWSClientManager().get_current_region() == "us-east-1"

    @patch("starter_envs.core.aws_client.boto3.Session")
    def test_with_credentials_keeps_region(self, mock_session_class):
        """Derived manager is bound to the new credentials and same region."""
        credentials = AWSCredentials("AKIA", "secret")
        manager = AWSClientManager(profile_name="root", region_name="ap-southeast-2")

        derived = manager.with_credentials(credentials)

        assert derived.credentials == credentials
        assert derived.get_current_region() == "ap-southeast-2"
        assert manager.credentials is None
