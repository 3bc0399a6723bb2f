"""
Provisioning of the on-disk node repository.
"""

import copy
import logging
import os
import secrets
from typing import Any, Dict, Mapping

from oss_store.core.exceptions import EngineError, RepositoryError, RepositoryExistsError
from oss_store.core.models import NodeConfig
from oss_store.ipfs.config import overlay_section, parse_override, validate_datastore
from oss_store.utils.path_utils import ensure_dir


logger = logging.getLogger(__name__)

SWARM_KEY_FILE = "swarm.key"
SWARM_KEY_HEADER = "/key/swarm/psk/1.0.0/\n/base16/\n"


class RepositoryProvisioner:
    """
    Creates the persistent repository for a node.

    A root path holds at most one repository: provisioning a path that is
    already initialized fails unless the config allows reusing it.
    """

    def __init__(self, config: NodeConfig, engine: Any):
        """
        Initialize the provisioner.

        Args:
            config: Node configuration
            engine: Engine that writes the repository
        """
        self.config = config
        self.engine = engine

    def is_initialized(self) -> bool:
        return self.engine.is_initialized(self.config.root_path)

    def provision(self, base_config: Mapping[str, Any]) -> bool:
        """
        Materialize the repository at the root path.

        Args:
            base_config: Resolved engine configuration

        Returns:
            True if a repository was created, False if an existing one is reused

        Raises:
            ConfigError: If the datastore override is structurally invalid
            RepositoryExistsError: If the root path is already initialized
            RepositoryError: If the engine fails to write the repository
        """
        root_path = self.config.root_path
        ensure_dir(root_path)
        ensure_dir(self.config.temp_dir)

        if self.is_initialized():
            if self.config.reuse_repository:
                logger.info(f"Reusing existing repository at {root_path}")
                return False
            raise RepositoryExistsError(f"repository already initialized at {root_path}")

        node_config = self.build_config(base_config)
        try:
            self.engine.init_repo(root_path, node_config, timeout=self.config.startup_timeout)
        except EngineError as e:
            raise RepositoryError(f"failed to init ipfs repo at {root_path}: {e}") from e

        if self.config.private_network:
            self.write_swarm_key()

        logger.info(f"Provisioned repository at {root_path}")
        return True

    def build_config(self, base_config: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply the datastore override to a copy of ``base_config``."""
        node_config = copy.deepcopy(dict(base_config))
        datastore = parse_override(self.config.datastore, "Datastore")
        if datastore is not None:
            validate_datastore(datastore)
            overlay_section(node_config, "Datastore", datastore)
        return node_config

    def write_swarm_key(self) -> str:
        """
        Write the private network key into the repository.

        Returns:
            Path of the written key file
        """
        key = self.config.swarm_key or secrets.token_hex(32)

        path = os.path.join(self.config.root_path, SWARM_KEY_FILE)
        with open(path, "w") as f:
            f.write(SWARM_KEY_HEADER + key.lower() + "\n")
        os.chmod(path, 0o600)
        logger.info(f"Wrote private network key to {path}")
        return path
