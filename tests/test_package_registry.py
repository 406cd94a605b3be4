"""JSON package registry and service configuration loading."""

import json

from dexmanager.data.config import CONFIG_FILE_NAME, load_service_config
from dexmanager.data.package_registry import JsonPackageRegistry


class TestJsonPackageRegistry:

    def test_missing_file_is_empty(self, tmp_path):
        registry = JsonPackageRegistry(tmp_path / "packages.json")

        assert registry.get_installed_packages() == {}
        assert registry.get_package_info("com.a", 0) is None

    def test_malformed_file_is_empty(self, tmp_path):
        path = tmp_path / "packages.json"
        path.write_text("[1, 2", encoding="utf-8")

        assert JsonPackageRegistry(path).get_installed_packages() == {}

    def test_add_package_persists(self, tmp_path, make_app_info):
        path = tmp_path / "packages.json"
        registry = JsonPackageRegistry(path)
        registry.add_package(0, make_app_info("com.a"))
        registry.add_package(10, make_app_info("com.a", user_id=10))

        reloaded = JsonPackageRegistry(path)

        assert set(reloaded.get_installed_packages()) == {0, 10}
        info = reloaded.get_package_info("com.a", 10)
        assert info.application_info.data_dir == "/data/user/10/com.a"
        assert reloaded.get_package_info("com.a", 5) is None

    def test_add_package_replaces_same_user_entry(self, tmp_path, make_app_info):
        registry = JsonPackageRegistry(tmp_path / "packages.json")
        registry.add_package(0, make_app_info("com.a"))
        registry.add_package(0, make_app_info("com.a", storage="de"))

        packages = registry.get_installed_packages()[0]
        assert len(packages) == 1
        assert packages[0].application_info.data_dir == "/data/user_de/0/com.a"

    def test_reload_picks_up_external_changes(self, tmp_path, make_app_info):
        path = tmp_path / "packages.json"
        registry = JsonPackageRegistry(path)
        app_info = make_app_info("com.b")
        path.write_text(
            json.dumps(
                {"users": {"0": [{"package_name": "com.b", "application_info": app_info.model_dump()}]}}
            ),
            encoding="utf-8",
        )

        registry.reload()

        assert registry.get_package_info("com.b", 0).application_info == app_info


class TestServiceConfig:

    def test_defaults_are_written(self, tmp_path):
        config = load_service_config(tmp_path)

        assert "arm64" in config.supported_isas
        assert config.framework_path_prefixes == ["/system/framework/"]
        assert (tmp_path / CONFIG_FILE_NAME).exists()

    def test_partial_file_is_merged(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text(
            json.dumps({"supported_isas": ["x86_64"], "write_interval_seconds": 5}), encoding="utf-8"
        )

        config = load_service_config(tmp_path)

        assert config.supported_isas == ["x86_64"]
        assert config.write_interval_seconds == 5
        assert config.ledger_file == "package-dex-usage.json"
        saved = json.loads((tmp_path / CONFIG_FILE_NAME).read_text(encoding="utf-8"))
        assert saved["registry_file"] == "packages.json"

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text(
            json.dumps({"write_interval_seconds": -1}), encoding="utf-8"
        )

        config = load_service_config(tmp_path)

        assert config.write_interval_seconds == 30.0
