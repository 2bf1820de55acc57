"""Unit tests for the provisioning state file."""

import json
import os
import stat

import pytest

from starter_envs.core.models import DeploymentCredentials, Environment
from starter_envs.core.state import (
    STATE_FILE_NAME,
    ProvisioningState,
    StateFileError,
    StateStore,
)


class TestProvisioningState:
    """Test cases for ProvisioningState parsing."""

    def test_from_dict_full_document(self):
        """All recorded sections are parsed."""
        state = ProvisioningState.from_dict({
            "projectName": "acme",
            "awsRegion": "eu-west-1",
            "accounts": {"dev": "111111111111", "prod": "333333333333"},
            "adminUser": {"userName": "acme-admin", "accessKeyId": "AKIAADMIN"},
            "deploymentUsers": {"dev": "acme-dev-deploy"},
            "deploymentCredentials": {
                "dev": {
                    "userName": "acme-dev-deploy",
                    "accessKeyId": "AKIADEV",
                    "secretAccessKey": "secret",
                }
            },
        })

        assert state.project_name == "acme"
        assert state.aws_region == "eu-west-1"
        assert state.accounts == {
            Environment.DEV: "111111111111",
            Environment.PROD: "333333333333",
        }
        assert state.admin_user.user_name == "acme-admin"
        assert state.deployment_users == {Environment.DEV: "acme-dev-deploy"}
        assert state.deployment_credentials[Environment.DEV] == DeploymentCredentials(
            "acme-dev-deploy", "AKIADEV", "secret"
        )

    def test_from_dict_defaults(self):
        """Missing optional sections default to empty."""
        state = ProvisioningState.from_dict({"projectName": "acme"})

        assert state.aws_region == "us-east-1"
        assert state.accounts == {}
        assert state.admin_user is None
        assert state.deployment_credentials == {}

    def test_from_dict_ignores_unknown_environments(self):
        """Unknown environment keys are skipped."""
        state = ProvisioningState.from_dict({
            "projectName": "acme",
            "accounts": {"dev": "111111111111", "qa": "999999999999"},
        })
        assert state.accounts == {Environment.DEV: "111111111111"}

    def test_from_dict_missing_project_name(self):
        """projectName is required."""
        with pytest.raises(StateFileError) as exc_info:
            ProvisioningState.from_dict({"awsRegion": "us-east-1"})
        assert "projectName" in str(exc_info.value)

    def test_from_dict_malformed_credentials(self):
        """Malformed credential entries are reported as state errors."""
        with pytest.raises(StateFileError):
            ProvisioningState.from_dict({
                "projectName": "acme",
                "deploymentCredentials": {"dev": {"userName": "x"}},
            })

    def test_account_name(self):
        """Account names follow project-env."""
        state = ProvisioningState(project_name="acme", aws_region="us-east-1")
        assert state.account_name(Environment.STAGE) == "acme-stage"


class TestStateStore:
    """Test cases for StateStore class."""

    def test_load_missing_file(self, tmp_path):
        """Missing state file explains where to run the command."""
        store = StateStore.for_project(str(tmp_path))

        with pytest.raises(StateFileError) as exc_info:
            store.load()
        assert "generated project directory" in str(exc_info.value)

    def test_load_invalid_json(self, tmp_path):
        """Invalid JSON is reported as a state error."""
        store = StateStore.for_project(str(tmp_path))
        store.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateFileError) as exc_info:
            store.load()
        assert "not valid JSON" in str(exc_info.value)

    def test_load_non_object(self, tmp_path):
        """Top-level JSON must be an object."""
        store = StateStore.for_project(str(tmp_path))
        store.path.write_text("[]", encoding="utf-8")

        with pytest.raises(StateFileError):
            store.load()

    def test_record_account_preserves_other_fields(self, state_store, raw_state):
        """Recording merges into the existing document."""
        state = state_store.record_account(Environment.DEV, "111111111111")

        assert state.accounts == {Environment.DEV: "111111111111"}
        data = raw_state()
        assert data["platforms"] == ["web"]
        assert data["accounts"] == {"dev": "111111111111"}

    def test_records_are_read_modify_write(self, state_store, raw_state):
        """Each record re-reads the file so earlier writes survive."""
        state_store.record_account(Environment.DEV, "111111111111")

        # another writer adds a field between our records
        data = raw_state()
        data["extra"] = True
        with open(state_store.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

        state_store.record_account(Environment.STAGE, "222222222222")

        data = raw_state()
        assert data["extra"] is True
        assert data["accounts"] == {"dev": "111111111111", "stage": "222222222222"}

    def test_record_account_replacing_id_drops_deployment_entries(self, state_store, raw_state):
        """A new account id invalidates the old account's deployment user and key."""
        state_store.record_account(Environment.DEV, "555555555555")
        state_store.record_deployment_credentials(
            Environment.DEV, DeploymentCredentials("acme-dev-deploy", "AKIAOLD", "old")
        )
        state_store.record_deployment_credentials(
            Environment.PROD, DeploymentCredentials("acme-prod-deploy", "AKIAPROD", "p")
        )

        state = state_store.record_account(Environment.DEV, "100000000001")

        assert Environment.DEV not in state.deployment_users
        assert Environment.DEV not in state.deployment_credentials
        assert state.deployment_credentials[Environment.PROD].access_key_id == "AKIAPROD"
        data = raw_state()
        assert data["accounts"]["dev"] == "100000000001"
        assert "dev" not in data["deploymentCredentials"]

    def test_record_same_account_keeps_deployment_entries(self, state_store):
        state_store.record_account(Environment.DEV, "111111111111")
        state_store.record_deployment_credentials(
            Environment.DEV, DeploymentCredentials("acme-dev-deploy", "AKIADEV", "s")
        )

        state = state_store.record_account(Environment.DEV, "111111111111")

        assert state.deployment_credentials[Environment.DEV].access_key_id == "AKIADEV"

    def test_record_admin_user_stores_no_secret(self, state_store, raw_state):
        """Admin user record holds the name and key id only."""
        state_store.record_admin_user("acme-admin", "AKIAADMIN")

        assert raw_state()["adminUser"] == {
            "userName": "acme-admin",
            "accessKeyId": "AKIAADMIN",
        }

    def test_record_deployment_credentials(self, state_store, raw_state):
        """Credentials record also sets the deployment user name."""
        credentials = DeploymentCredentials("acme-dev-deploy", "AKIADEV", "secret")

        state = state_store.record_deployment_credentials(Environment.DEV, credentials)

        assert state.deployment_credentials[Environment.DEV] == credentials
        data = raw_state()
        assert data["deploymentUsers"] == {"dev": "acme-dev-deploy"}
        assert data["deploymentCredentials"]["dev"] == {
            "userName": "acme-dev-deploy",
            "accessKeyId": "AKIADEV",
            "secretAccessKey": "secret",
        }

    def test_write_is_owner_only_and_leaves_no_temp_files(self, state_store, project_dir):
        """State file is rewritten with 0600 permissions and no leftovers."""
        state_store.record_deployment_user(Environment.DEV, "acme-dev-deploy")

        mode = stat.S_IMODE(os.stat(state_store.path).st_mode)
        assert mode == 0o600
        assert sorted(p.name for p in project_dir.iterdir()) == [state_store.path.name]

    def test_update_failure_keeps_previous_contents(self, state_store, raw_state):
        """A failing mutation leaves the file untouched."""
        before = raw_state()

        def mutate(data):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            state_store.update(mutate)

        assert raw_state() == before

    def test_for_project_uses_state_file_name(self, tmp_path):
        """Store path is the state file inside the project directory."""
        (tmp_path / STATE_FILE_NAME).write_text(json.dumps({"projectName": "demo"}), encoding="utf-8")
        store = StateStore.for_project(str(tmp_path))

        assert store.exists()
        assert store.load().project_name == "demo"
