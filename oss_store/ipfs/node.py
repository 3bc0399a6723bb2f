"""
Lifecycle of the storage node: plugins, repository, daemon.
"""

import logging
import threading
from importlib.metadata import entry_points
from typing import Any, Dict, List, Mapping, Optional, Sequence

from oss_store.core.exceptions import (
    EngineError,
    NodeStartError,
    NodeStateError,
    RepositoryOpenError,
)
from oss_store.core.models import NodeConfig, NodeState
from oss_store.ipfs.repo import RepositoryProvisioner


logger = logging.getLogger(__name__)

PLUGIN_GROUP = "oss_store.ipfs_plugins"

# The node stores and serves routing records, it is not a routing client.
FULL_ROUTING = "dht"


def load_plugins(group: str = PLUGIN_GROUP) -> List[Any]:
    """
    Load the engine plugins registered under an entry point group.

    Entry points may name a plugin object or a class, which is instantiated.
    """
    eps = entry_points()
    if hasattr(eps, "select"):
        selected = eps.select(group=group)
    else:
        selected = eps.get(group, [])

    plugins = []
    for ep in selected:
        plugin = ep.load()
        if isinstance(plugin, type):
            plugin = plugin()
        logger.debug(f"Loaded plugin {ep.name}")
        plugins.append(plugin)
    return plugins


class NodeManager:
    """
    Owns one storage node from provisioning to shutdown.

    States move strictly forward: UNSTARTED -> PROVISIONED -> RUNNING ->
    STOPPED. ``stop`` is allowed from any state so a failed construction
    can be torn down.
    """

    def __init__(
        self,
        config: NodeConfig,
        engine: Any,
        plugins: Optional[Sequence[Any]] = None
    ):
        """
        Initialize the node manager.

        Args:
            config: Node configuration
            engine: Engine that provisions and runs the node
            plugins: Engine plugins; loaded from entry points when None
        """
        self.config = config
        self.engine = engine
        self.plugins = plugins
        self.provisioner = RepositoryProvisioner(config, engine)
        self.state = NodeState.UNSTARTED
        self._daemon = None
        self._lock = threading.Lock()

    @property
    def client(self) -> Any:
        """Content API client of the running node."""
        if self.state is not NodeState.RUNNING:
            raise NodeStateError(f"node is {self.state.value}, not running")
        return self._daemon.client

    def _transition(self, expected: NodeState, new: NodeState) -> None:
        if self.state is not expected:
            raise NodeStateError(
                f"cannot move node from {self.state.value} to {new.value}"
            )
        self.state = new

    def provision(self, base_config: Mapping[str, Any]) -> bool:
        """
        Create the node repository.

        Returns:
            True if a repository was created, False if one was reused
        """
        with self._lock:
            if self.state is not NodeState.UNSTARTED:
                raise NodeStateError(f"cannot provision a node that is {self.state.value}")
            created = self.provisioner.provision(base_config)
            self._transition(NodeState.UNSTARTED, NodeState.PROVISIONED)
            return created

    def start(self) -> Any:
        """
        Start the node.

        Returns:
            Content API client of the running node

        Raises:
            NodeStartError: If plugins fail to load, the repository cannot be
                opened, or the node cannot be constructed
        """
        with self._lock:
            if self.state is not NodeState.PROVISIONED:
                raise NodeStateError(f"cannot start a node that is {self.state.value}")

            self._setup_plugins()

            root_path = self.config.root_path
            if not self.engine.is_initialized(root_path):
                cause = RepositoryOpenError(f"no repository at {root_path}")
                raise NodeStartError(f"failed to open ipfs repo: {cause}", cause) from cause

            if self.config.node_type not in ("full", "server", ""):
                logger.info(f"Node type '{self.config.node_type}' runs with full routing")

            try:
                self._daemon = self.engine.start(
                    root_path,
                    online=self.config.networking,
                    routing=FULL_ROUTING,
                    timeout=self.config.startup_timeout,
                    request_timeout=self.config.request_timeout
                )
            except RepositoryOpenError as e:
                raise NodeStartError(f"failed to open ipfs repo: {e}", e) from e
            except EngineError as e:
                raise NodeStartError(f"failed to create ipfs node: {e}", e) from e

            self._transition(NodeState.PROVISIONED, NodeState.RUNNING)
            logger.info(f"Node started for {root_path}")
            return self._daemon.client

    def stop(self) -> None:
        """Stop the node; a no-op once stopped."""
        with self._lock:
            if self.state is NodeState.STOPPED:
                return
            if self._daemon is not None:
                self._daemon.stop(timeout=self.config.request_timeout)
                self._daemon = None
            self.state = NodeState.STOPPED
            logger.info(f"Node stopped for {self.config.root_path}")

    def identity(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Identity and listen addresses of the running node."""
        return self.client.id(timeout=timeout)

    def _setup_plugins(self) -> None:
        root_path = self.config.root_path
        plugins = self.plugins
        if plugins is None:
            try:
                plugins = load_plugins()
            except (ImportError, AttributeError) as e:
                raise NodeStartError(f"error loading plugins: {e}", e) from e

        for plugin in plugins:
            initialize = getattr(plugin, "initialize", None)
            if initialize is not None:
                try:
                    initialize(root_path)
                except Exception as e:
                    raise NodeStartError(f"error initializing plugins: {e}", e) from e

        for plugin in plugins:
            inject = getattr(plugin, "inject", None)
            if inject is None:
                continue
            try:
                inject(self.engine)
            except Exception as e:
                if not self.config.ignore_plugin_errors:
                    raise NodeStartError(f"error injecting plugins: {e}", e) from e
                logger.warning(f"Ignoring plugin injection failure for {type(plugin).__name__}: {e}")
