"""
Unit tests for AdapterResolver.
"""

import pytest

from service_gateway.app.adapters.resolver import AdapterResolver, AdapterTarget
from shared.errors import UnknownModelError


class TestAdapterResolver:
    """Test cases for AdapterResolver."""

    def test_defaults_when_environment_is_empty(self):
        """Test default base URLs are used without overrides."""
        resolver = AdapterResolver(environ={})

        assert resolver.resolve("adapter-a") == "http://localhost:8081"
        assert resolver.resolve("adapter-b") == "http://localhost:8082"

    def test_environment_override(self):
        """Test a non-empty environment variable replaces the default."""
        resolver = AdapterResolver(environ={"ADAPTER_A_URL": "http://adapter-a:9000"})

        assert resolver.resolve("adapter-a") == "http://adapter-a:9000"
        assert resolver.resolve("adapter-b") == "http://localhost:8082"

    def test_blank_override_falls_back_to_default(self):
        """Test whitespace-only overrides are ignored."""
        resolver = AdapterResolver(environ={"ADAPTER_B_URL": "   "})

        assert resolver.resolve("adapter-b") == "http://localhost:8082"

    def test_override_read_on_every_call(self):
        """Test changes to the environment apply without rebuilding the resolver."""
        environ = {}
        resolver = AdapterResolver(environ=environ)
        assert resolver.resolve("adapter-a") == "http://localhost:8081"

        environ["ADAPTER_A_URL"] = "http://changed:1234"

        assert resolver.resolve("adapter-a") == "http://changed:1234"

    def test_process_environment_used_by_default(self, monkeypatch):
        """Test os.environ is consulted when no mapping is injected."""
        monkeypatch.setenv("ADAPTER_B_URL", "http://from-env:8082")
        resolver = AdapterResolver()

        assert resolver.resolve("adapter-b") == "http://from-env:8082"

    @pytest.mark.parametrize("model", ["adapter-c", "", "ADAPTER-A", "adapter-a "])
    def test_unknown_model(self, model):
        """Test names outside the table are rejected, including case variants."""
        resolver = AdapterResolver(environ={})

        with pytest.raises(UnknownModelError) as exc_info:
            resolver.resolve(model)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "unknown model"

    def test_target_and_models(self):
        """Test target() and the declared model list."""
        resolver = AdapterResolver(environ={})

        assert resolver.models == ["adapter-a", "adapter-b"]
        assert resolver.is_known("adapter-b")
        assert not resolver.is_known("adapter-z")
        assert resolver.target("adapter-a") == AdapterTarget("adapter-a", "http://localhost:8081")

    def test_custom_table(self):
        """Test an injected adapter table replaces the defaults."""
        resolver = AdapterResolver(
            adapters={"echo": ("ECHO_URL", "http://echo")},
            environ={},
        )

        assert resolver.models == ["echo"]
        assert resolver.resolve("echo") == "http://echo"
        with pytest.raises(UnknownModelError):
            resolver.resolve("adapter-a")
