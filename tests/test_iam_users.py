"""Tests for IAM user management functionality."""

import json
import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError

from starter_envs.core.aws_client import AWSClientManager
from starter_envs.provisioning.iam_users import (
    AccessKeyLimitExceeded,
    IAMUserError,
    IAMUserManager,
    MANAGED_BY_TAG_KEY,
    MANAGED_BY_TAG_VALUE,
    PolicyAlreadyExistsError,
)


def paginator_for(pages):
    paginator = Mock()
    paginator.paginate.return_value = pages
    return paginator


@pytest.fixture
def mock_aws_client():
    """Mock AWS client manager."""
    client = Mock(spec=AWSClientManager)
    client.get_current_region.return_value = 'us-east-1'
    return client


@pytest.fixture
def mock_iam_client():
    """Mock IAM client."""
    return Mock()


@pytest.fixture
def iam_users(mock_aws_client, mock_iam_client):
    """IAM user manager with mocked client."""
    manager = IAMUserManager(mock_aws_client)
    mock_aws_client.get_client.return_value = mock_iam_client
    return manager


class TestIAMUserManager:
    """Test IAMUserManager class."""

    def test_get_client(self, iam_users, mock_aws_client, mock_iam_client):
        """Test client initialization and caching."""
        assert iam_users._get_client() == mock_iam_client
        iam_users._get_client()
        mock_aws_client.get_client.assert_called_once_with('iam', 'us-east-1')

    def test_user_exists(self, iam_users, mock_iam_client):
        mock_iam_client.get_user.return_value = {'User': {'UserName': 'acme-admin'}}
        assert iam_users.user_exists('acme-admin') is True

    def test_user_not_found(self, iam_users, mock_iam_client):
        mock_iam_client.get_user.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchEntity'}}, 'GetUser'
        )
        assert iam_users.user_exists('acme-admin') is False

    def test_get_user_other_error(self, iam_users, mock_iam_client):
        mock_iam_client.get_user.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied'}}, 'GetUser'
        )
        with pytest.raises(IAMUserError):
            iam_users.get_user('acme-admin')

    def test_is_managed_by_tool(self, iam_users, mock_iam_client):
        """ManagedBy tag may be on any page."""
        mock_iam_client.get_paginator.return_value = paginator_for([
            {'Tags': [{'Key': 'Purpose', 'Value': 'CLI Admin'}]},
            {'Tags': [{'Key': MANAGED_BY_TAG_KEY, 'Value': MANAGED_BY_TAG_VALUE}]},
        ])

        assert iam_users.is_managed_by_tool('acme-admin') is True
        mock_iam_client.get_paginator.assert_called_with('list_user_tags')

    def test_is_not_managed_by_tool(self, iam_users, mock_iam_client):
        mock_iam_client.get_paginator.return_value = paginator_for([
            {'Tags': [{'Key': MANAGED_BY_TAG_KEY, 'Value': 'terraform'}]},
        ])
        assert iam_users.is_managed_by_tool('acme-admin') is False

    def test_create_user_tags(self, iam_users, mock_iam_client):
        """Created users carry Purpose and ManagedBy tags."""
        mock_iam_client.create_user.return_value = {'User': {'UserName': 'acme-dev-deploy'}}

        iam_users.create_user('acme-dev-deploy', '/deployment/', 'CDK Deployment')

        mock_iam_client.create_user.assert_called_once_with(
            UserName='acme-dev-deploy',
            Path='/deployment/',
            Tags=[
                {'Key': 'Purpose', 'Value': 'CDK Deployment'},
                {'Key': 'ManagedBy', 'Value': 'create-aws-starter-kit'},
            ]
        )

    def test_policy_exists(self, iam_users, mock_iam_client):
        mock_iam_client.get_policy.side_effect = [
            {'Policy': {}},
            ClientError({'Error': {'Code': 'NoSuchEntity'}}, 'GetPolicy'),
        ]
        assert iam_users.policy_exists('arn:aws:iam::1:policy/p') is True
        assert iam_users.policy_exists('arn:aws:iam::1:policy/p') is False

    def test_create_policy(self, iam_users, mock_iam_client):
        mock_iam_client.create_policy.return_value = {
            'Policy': {'Arn': 'arn:aws:iam::111111111111:policy/acme-dev-cdk-deploy'}
        }
        document = {'Version': '2012-10-17', 'Statement': []}

        arn = iam_users.create_policy('acme-dev-cdk-deploy', document, 'desc')

        assert arn == 'arn:aws:iam::111111111111:policy/acme-dev-cdk-deploy'
        kwargs = mock_iam_client.create_policy.call_args[1]
        assert json.loads(kwargs['PolicyDocument']) == document

    def test_create_access_key(self, iam_users, mock_iam_client):
        mock_iam_client.get_paginator.return_value = paginator_for([
            {'AccessKeyMetadata': []}
        ])
        mock_iam_client.create_access_key.return_value = {
            'AccessKey': {'AccessKeyId': 'AKIANEW', 'SecretAccessKey': 'secret'}
        }

        credentials = iam_users.create_access_key('acme-dev-deploy')

        assert credentials.access_key_id == 'AKIANEW'
        assert credentials.secret_access_key == 'secret'
        assert credentials.session_token is None

    def test_create_access_key_limit(self, iam_users, mock_iam_client):
        """Two existing keys block issuance before calling CreateAccessKey."""
        mock_iam_client.get_paginator.return_value = paginator_for([
            {'AccessKeyMetadata': [{'AccessKeyId': 'A'}]},
            {'AccessKeyMetadata': [{'AccessKeyId': 'B'}]},
        ])

        with pytest.raises(AccessKeyLimitExceeded):
            iam_users.create_access_key('acme-dev-deploy')
        mock_iam_client.create_access_key.assert_not_called()

    def test_create_access_key_client_error_unwrapped(self, iam_users, mock_iam_client):
        """IAM errors propagate as ClientError so callers can retry them."""
        mock_iam_client.get_paginator.return_value = paginator_for([{'AccessKeyMetadata': []}])
        mock_iam_client.create_access_key.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchEntity'}}, 'CreateAccessKey'
        )

        with pytest.raises(ClientError):
            iam_users.create_access_key('acme-admin')

    def test_create_policy_already_exists(self, iam_users, mock_iam_client):
        mock_iam_client.create_policy.side_effect = ClientError(
            {'Error': {'Code': 'EntityAlreadyExists'}}, 'CreatePolicy'
        )
        with pytest.raises(PolicyAlreadyExistsError):
            iam_users.create_policy('acme-dev-cdk-deploy', {}, 'desc')

    def test_create_user_failure_wrapped(self, iam_users, mock_iam_client):
        mock_iam_client.create_user.side_effect = ClientError(
            {'Error': {'Code': 'LimitExceeded'}}, 'CreateUser'
        )
        with pytest.raises(IAMUserError):
            iam_users.create_user('acme-admin', '/admin/', 'CLI Admin')
