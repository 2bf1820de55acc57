"""Unit tests for shared value types."""

import pytest

from starter_envs.core.events import EventRecorder, EventStatus, ProgressEvent
from starter_envs.core.models import AWSCredentials, DeploymentCredentials, Environment


class TestEnvironment:
    """Test cases for Environment enum."""

    def test_ordered(self):
        assert Environment.ordered() == [Environment.DEV, Environment.STAGE, Environment.PROD]

    def test_parse_is_case_insensitive(self):
        assert Environment.parse(" Prod ") is Environment.PROD

    def test_parse_invalid(self):
        """Invalid names list the valid choices."""
        with pytest.raises(ValueError) as exc_info:
            Environment.parse("qa")
        assert "dev, stage, prod" in str(exc_info.value)

    def test_display_names(self):
        assert [env.display_name for env in Environment.ordered()] == [
            "Development", "Staging", "Production",
        ]


class TestCredentials:
    """Test cases for credential value types."""

    def test_session_kwargs_include_token_only_when_set(self):
        long_lived = AWSCredentials("AKIA", "secret")
        temporary = AWSCredentials("ASIA", "secret", "token")

        assert "aws_session_token" not in long_lived.as_session_kwargs()
        assert temporary.as_session_kwargs()["aws_session_token"] == "token"
        assert temporary.as_environment()["AWS_SESSION_TOKEN"] == "token"

    def test_repr_masks_secret(self):
        assert "s3cr3t-value" not in repr(AWSCredentials("AKIA", "s3cr3t-value"))
        assert "secret-value" not in repr(DeploymentCredentials("u", "AKIA", "secret-value"))

    def test_deployment_credentials_dict_keys(self):
        credentials = DeploymentCredentials("acme-dev-deploy", "AKIA", "secret")
        data = credentials.to_dict()

        assert data == {
            "userName": "acme-dev-deploy",
            "accessKeyId": "AKIA",
            "secretAccessKey": "secret",
        }
        assert DeploymentCredentials.from_dict(data) == credentials


class TestEventRecorder:
    """Test cases for EventRecorder."""

    def test_records_and_forwards(self):
        forwarded = []
        recorder = EventRecorder(forward=forwarded.append)
        event = ProgressEvent("accounts", EventStatus.WARNING, "stale entry")

        recorder(event)
        recorder(ProgressEvent("accounts", EventStatus.INFO, "info"))

        assert forwarded[0] is event
        assert recorder.by_status(EventStatus.WARNING) == [event]
