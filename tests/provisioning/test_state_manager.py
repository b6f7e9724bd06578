import json

import pytest

from provisioning.state_manager import InstallationState, StateStore


@pytest.fixture
def store(tmp_path, app_settings, mock_logger):
    return StateStore(tmp_path / "installed", "moodle", "4.5.1", app_settings, mock_logger)


def test_fresh_store_has_no_markers(store):
    assert store.is_installed() is False
    assert store.has_any_marker() is False
    assert store.read_marker() is None
    assert store.state() is InstallationState.NOT_INSTALLED


def test_mark_installed_writes_json_marker_named_after_version(store):
    marker = store.mark_installed()

    assert store.marker_path.name == "4.5.1"
    data = json.loads(store.marker_path.read_text())
    assert data["component"] == "moodle"
    assert data["version"] == "4.5.1"
    assert data["installed_at"] == marker.installed_at
    assert store.is_installed() is True
    assert store.state() is InstallationState.INSTALLED


def test_mark_installed_never_rewrites_existing_marker(store):
    first = store.mark_installed()
    before = store.marker_path.read_text()

    second = store.mark_installed()

    assert second == first
    assert store.marker_path.read_text() == before


def test_legacy_timestamp_marker_is_read(store):
    store.state_dir.mkdir(parents=True)
    store.marker_path.write_text("Tue Mar  4 10:00:00 UTC 2025\n")

    marker = store.read_marker()

    assert marker.version == "4.5.1"
    assert marker.installed_at == "Tue Mar  4 10:00:00 UTC 2025"


def test_other_versions_count_as_markers(tmp_path, app_settings):
    state_dir = tmp_path / "installed"
    StateStore(state_dir, "moodle", "4.4.0", app_settings).mark_installed()

    newer = StateStore(state_dir, "moodle", "4.5.1", app_settings)

    assert newer.is_installed() is False
    assert newer.has_any_marker() is True
    assert newer.list_markers() == ["4.4.0"]


def test_hidden_files_are_not_version_markers(store):
    store.write_value(".suitecrm_url", "https://crm.example")
    store.state_dir.joinpath(".gibbon-integration-setup").write_text("x")
    assert store.list_markers() == []
    assert store.has_any_marker() is False


def test_integration_marker_requires_installation(store):
    with pytest.raises(RuntimeError):
        store.mark_integration_complete(".moodle-integration-setup")
    assert store.is_integration_complete(".moodle-integration-setup") is False


def test_integration_marker_after_installation(store):
    store.mark_installed()
    store.mark_integration_complete(".moodle-integration-setup")

    assert store.is_integration_complete(".moodle-integration-setup") is True
    assert store.state(".moodle-integration-setup") is InstallationState.INTEGRATION_COMPLETE
    assert store.list_markers() == ["4.5.1"]


def test_values_round_trip(store):
    assert store.read_value(".suitecrm_url") is None
    store.write_value(".suitecrm_url", "https://crm.example")
    assert store.read_value(".suitecrm_url") == "https://crm.example"


@pytest.mark.parametrize("version", ["", "../etc", "1.0/2", ".hidden"])
def test_invalid_versions_are_rejected(tmp_path, version):
    with pytest.raises(ValueError):
        StateStore(tmp_path, "moodle", version)
