"""
Unit tests for environment-driven settings.
"""

from virt_api.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("POD_NAMESPACE", "VIRT_API_PORT", "SUBRESOURCE_VERSIONS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings()

        assert settings.namespace == "kubevirt"
        assert settings.service_name == "virt-api"
        assert settings.port == 443
        assert settings.subresource_group == "subresource.kubevirt.io"
        assert settings.subresource_versions == ["v1alpha3"]
        assert settings.webhook_api_versions == ["v1alpha3"]
        assert settings.admission_handlers == "virt_api.webhooks.passthrough:build_handlers"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("POD_NAMESPACE", "virt-system")
        monkeypatch.setenv("VIRT_API_PORT", "8443")
        monkeypatch.setenv("SUBRESOURCE_VERSIONS", "v1alpha3, v1 ,")
        monkeypatch.setenv("JSON_LOGS", "false")

        settings = Settings()

        assert settings.namespace == "virt-system"
        assert settings.port == 8443
        assert settings.subresource_versions == ["v1alpha3", "v1"]
        assert settings.json_logs is False
