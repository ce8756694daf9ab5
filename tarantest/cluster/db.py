"""
Database lifecycle contract and its Tarantool implementation.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..config import ClusterConfig
from .instance_config import INSTANCE_PATH, render_instance_config
from .primary import PrimaryLocator

SERVICE = "tarantool@jepsen"

# run(node, argv) -> stdout. Provided by the orchestration layer.
RemoteExecutor = Callable[[str, List[str]], str]


class DatabaseLifecycle(ABC):
    """Per-node lifecycle operations the fault layer and clients rely on."""

    @abstractmethod
    def setup(self, node: str):
        pass

    @abstractmethod
    def teardown(self, node: str):
        pass

    @abstractmethod
    def start(self, node: str):
        pass

    @abstractmethod
    def kill(self, node: str):
        pass

    @abstractmethod
    def pause(self, node: str):
        pass

    @abstractmethod
    def resume(self, node: str):
        pass

    @abstractmethod
    def primaries(self) -> List[str]:
        """Nodes currently acting as leader."""
        pass


class TarantoolDB(DatabaseLifecycle):
    """
    Tarantool managed through systemd on each node.

    Package installation is the orchestration layer's job; this class only
    writes the instance file, drives the service and sends signals, all via
    the injected executor.
    """

    def __init__(self, config: ClusterConfig, executor: RemoteExecutor,
                 locator: Optional[PrimaryLocator] = None):
        self.config = config
        self._run = executor
        self.locator = locator or PrimaryLocator(config)

    def setup(self, node: str):
        print(f"[{node}] Setting up Tarantool")
        self.configure(node)
        self._run(node, ["systemctl", "daemon-reload"])
        self.start(node)

    def configure(self, node: str):
        """Write the instance file for a node."""
        conf = render_instance_config(self.config, node)
        self._run(node, ["mkdir", "-p", self.config.data_dir])
        self._run(node, ["chown", "-R", "tarantool:tarantool", self.config.data_dir])
        self._run(node, ["mkdir", "-p", "/etc/tarantool/instances.enabled"])
        self._run(node, ["bash", "-c",
                         f"cat > {INSTANCE_PATH} << 'EOF'\n{conf}\nEOF"])

    def teardown(self, node: str):
        print(f"[{node}] Stopping Tarantool")
        self._run(node, ["bash", "-c", f"systemctl stop {SERVICE} || true"])
        self._run(node, ["bash", "-c",
                         f"rm -rf {self.config.log_file} {self.config.data_dir}/*"])

    def start(self, node: str):
        print(f"[{node}] Starting Tarantool")
        self._run(node, ["systemctl", "start", SERVICE])

    def kill(self, node: str):
        print(f"[{node}] Killing Tarantool")
        self._run(node, ["pkill", "-KILL", "tarantool"])

    def pause(self, node: str):
        self._run(node, ["pkill", "-STOP", "tarantool"])

    def resume(self, node: str):
        self._run(node, ["pkill", "-CONT", "tarantool"])

    def primaries(self) -> List[str]:
        return self.locator.primaries()

    def log_files(self, node: str) -> List[str]:
        return [self.config.log_file]
