import os

import pytest

from tf_deploy_kit.config import DeployConfig, ResourceSpec, load_env_files
from tf_deploy_kit.errors import ConfigError


def test_defaults_when_env_is_empty(clean_env: pytest.MonkeyPatch) -> None:
    cfg = DeployConfig.from_env()

    assert cfg.terraform_bin == "terraform"
    assert cfg.workspace_dir == ".tfdeploy"
    assert cfg.step_timeout is None
    assert cfg.max_launch_retries == 2
    assert cfg.credential_source == "env"


def test_numeric_env_values_are_parsed(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("STEP_TIMEOUT_SECONDS", "30")
    clean_env.setenv("MAX_LAUNCH_RETRIES", "5")
    clean_env.setenv("RETRY_BACKOFF_SECONDS", "0.5")
    clean_env.setenv("STREAM_OUTPUT", "yes")

    cfg = DeployConfig.from_env()

    assert cfg.step_timeout == 30.0
    assert cfg.max_launch_retries == 5
    assert cfg.retry_backoff == 0.5
    assert cfg.stream_output is True


def test_malformed_number_raises_config_error(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MAX_LAUNCH_RETRIES", "many")

    with pytest.raises(ConfigError) as excinfo:
        DeployConfig.from_env()

    assert "MAX_LAUNCH_RETRIES" in str(excinfo.value)


def test_secret_manager_source_requires_project(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("CREDENTIAL_SOURCE", "gcp-secret-manager")

    with pytest.raises(ConfigError) as excinfo:
        DeployConfig.from_env()

    assert "SECRET_MANAGER_PROJECT" in str(excinfo.value)


def test_unknown_credential_source(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("CREDENTIAL_SOURCE", "vault")

    with pytest.raises(ConfigError):
        DeployConfig.from_env()


def test_later_env_file_overrides_earlier(tmp_path, clean_env: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("TERRAFORM_BIN=tf-a\n", encoding="utf-8")
    (tmp_path / ".env.secrets").write_text("TERRAFORM_BIN=tf-b\n", encoding="utf-8")
    # teardown 시 원래 상태로 되돌리기 위해 monkeypatch 로 먼저 등록
    clean_env.setenv("TERRAFORM_BIN", "placeholder")

    load_env_files(str(tmp_path))

    assert os.environ["TERRAFORM_BIN"] == "tf-b"


def test_workspace_path_is_relative_to_base_dir(tmp_path) -> None:
    cfg = DeployConfig(workspace_dir="ws")
    assert cfg.workspace_path(str(tmp_path)) == os.path.join(str(tmp_path), "ws")

    absolute = DeployConfig(workspace_dir=str(tmp_path / "abs"))
    assert absolute.workspace_path("/elsewhere") == str(tmp_path / "abs")


def test_spec_file_is_loaded_with_defaults(tmp_path) -> None:
    path = tmp_path / "spec.env"
    path.write_text(
        "# comment\n"
        "RESOURCE_GROUP_NAME=rg1\n"
        "LOCATION=eastus\n"
        "STORAGE_ACCOUNT_NAME=acct123\n",
        encoding="utf-8",
    )

    spec = ResourceSpec.from_file(str(path))

    assert spec == ResourceSpec(
        resource_group_name="rg1",
        location="eastus",
        storage_account_name="acct123",
        account_tier="Standard",
        replication_type="LRS",
    )


def test_spec_file_missing_required_key_leaves_field_empty(tmp_path) -> None:
    path = tmp_path / "spec.env"
    path.write_text("RESOURCE_GROUP_NAME=rg1\nLOCATION=eastus\n", encoding="utf-8")

    spec = ResourceSpec.from_file(str(path))

    assert spec.storage_account_name == ""


def test_spec_file_with_unknown_key(tmp_path) -> None:
    path = tmp_path / "spec.env"
    path.write_text("RESOURCE_GROUP_NAME=rg1\nSKU=cheap\n", encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        ResourceSpec.from_file(str(path))

    assert "SKU" in str(excinfo.value)


def test_missing_spec_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        ResourceSpec.from_file(str(tmp_path / "nope.env"))
