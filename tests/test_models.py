"""
Tests for data models.
"""

import datetime
import gc
import os
import unittest

from oss_store.core.exceptions import ConfigError
from oss_store.core.models import ContentHandle, NodeConfig


class _Backend:
    pass


class TestNodeConfig(unittest.TestCase):
    """Tests for NodeConfig."""

    def test_defaults(self):
        config = NodeConfig(root_path="/data/node")
        self.assertEqual(config.temp_dir, os.path.join("/data/node", "staging"))
        self.assertTrue(config.networking)
        self.assertEqual(config.peers, ())
        self.assertEqual(config.key_bits, 2048)
        self.assertFalse(config.reuse_repository)

    def test_peers_become_tuple(self):
        config = NodeConfig(root_path="/data/node", peers=["/p2p/QmNnooDu7bfjPFoTZYxMNLWUQJyrVwtbZg5gBMjTezGAJN"])
        self.assertIsInstance(config.peers, tuple)
        self.assertEqual(len(config.peers), 1)

    def test_invalid_values(self):
        with self.assertRaises(ConfigError):
            NodeConfig(root_path="")
        with self.assertRaises(ConfigError):
            NodeConfig(root_path="/data/node", peers="/ip4/1.2.3.4/tcp/4001")
        with self.assertRaises(ConfigError):
            NodeConfig(root_path="/data/node", key_bits=1024)
        with self.assertRaises(ConfigError):
            NodeConfig(root_path="/data/node", swarm_key="not-hex")

    def test_swarm_key_accepted(self):
        key = "ab" * 32
        config = NodeConfig(root_path="/data/node", private_network=True, swarm_key=key)
        self.assertEqual(config.swarm_key, key)

    def test_dict_roundtrip(self):
        config = NodeConfig(root_path="/data/node", networking=False, node_type="client")
        restored = NodeConfig.from_dict(config.to_dict())
        self.assertEqual(restored, config)

    def test_from_dict_rejects_unknown_keys(self):
        with self.assertRaises(ConfigError):
            NodeConfig.from_dict({"root_path": "/data/node", "gateway": True})

    def test_from_dict_requires_root_path(self):
        with self.assertRaises(ConfigError):
            NodeConfig.from_dict({"networking": False})


class TestContentHandle(unittest.TestCase):
    """Tests for ContentHandle."""

    def test_backend_reference(self):
        backend = _Backend()
        handle = ContentHandle(path="/ipfs/QmX", name="QmX", storage=backend)
        self.assertIs(handle.backend, backend)

        del backend
        gc.collect()
        self.assertIsNone(handle.backend)

    def test_no_backend(self):
        handle = ContentHandle(path="/ipfs/QmX", name="QmX")
        self.assertIsNone(handle.backend)

    def test_to_dict(self):
        stamp = datetime.datetime(2024, 1, 2, 3, 4, 5)
        handle = ContentHandle(path="/ipfs/QmX", name="QmX", last_modified=stamp)
        self.assertEqual(handle.to_dict(), {
            "path": "/ipfs/QmX",
            "name": "QmX",
            "last_modified": "2024-01-02T03:04:05",
        })

    def test_equality_ignores_backend(self):
        a = ContentHandle(path="/ipfs/QmX", name="QmX", storage=_Backend())
        b = ContentHandle(path="/ipfs/QmX", name="QmX")
        self.assertEqual(a, b)


if __name__ == "__main__":
    unittest.main()
