"""Example module whose metadata lives in a companion YAML file."""


class MonitorModule:
    """Report on the simulated service at a configured interval.

    Name, version, dependencies and capabilities come from
    ``monitor_meta.yaml``; the YAML wins over class attributes.
    """

    def __init__(self) -> None:
        self._interval = None
        self._checks = 0

    def init(self, context) -> int:
        self._interval = context.dispatcher.call("config_get", "monitor.interval")
        # Exit-status style: 0 means success
        return 0 if self._interval else 1

    def monitor_check(self) -> dict:
        self._checks += 1
        return {"healthy": True, "checks": self._checks, "interval": self._interval}
