"""Example module with a dependency: simulated service control."""

from shipwright.decorator import capability


class ServiceModule:
    """Start and stop a simulated daemon.

    Demonstrates:
    - dependencies declared in code
    - a verify() hook that gates init()
    - init(context) using the dispatcher to reach another module
    """

    name = "service"
    version = "1.2.0"
    description = "Simulated service control"
    dependencies = ["config"]

    def __init__(self) -> None:
        self._service_name = None
        self._running = False

    def verify(self) -> bool:
        return True

    def init(self, context) -> None:
        self._service_name = context.dispatcher.call("config_get", "service.name")

    def cleanup(self) -> None:
        self._running = False

    @capability
    def service_start(self) -> bool:
        self._running = True
        return True

    @capability
    def service_stop(self) -> bool:
        self._running = False
        return True

    @capability
    def service_status(self) -> dict:
        return {"name": self._service_name, "running": self._running}
