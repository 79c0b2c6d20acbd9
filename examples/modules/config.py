"""Minimal example module: in-memory settings store."""

from shipwright.decorator import capability


class ConfigModule:
    """Holds key/value settings for the other example modules.

    Demonstrates the minimal duck-typed module interface:
    - name, version and description attributes
    - init() hook
    - methods exposed with @capability
    """

    name = "config"
    version = "1.2.0"
    description = "Key/value settings store"

    defaults = {
        "monitor.interval": 30,
        "service.name": "example-daemon",
    }

    def __init__(self) -> None:
        self._values: dict = {}

    def init(self) -> None:
        """Load the default settings."""
        self._values = dict(self.defaults)

    def cleanup(self) -> None:
        self._values.clear()

    @capability
    def config_get(self, key: str, default=None):
        return self._values.get(key, default)

    @capability
    def config_set(self, key: str, value) -> None:
        self._values[key] = value
