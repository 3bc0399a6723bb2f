"""
Tests for peer address parsing and dialing.
"""

import unittest

from fake_engine import FakeClient
from oss_store.core.exceptions import PeerAddressError
from oss_store.ipfs.peers import PeerConnector, parse_peer_address, parse_peers


PEER_A = "QmNnooDu7bfjPFoTZYxMNLWUQJyrVwtbZg5gBMjTezGAJN"
PEER_B = "QmQCU2EcMqAqQPR2i9bChDtGNJchTbq5TbXJJ16u19uLTa"
PEER_C = "QmbLHAnMoJPWSCR5Zhtx6BHJX9KiKNN6tpvbUcqanj75Nb"


class TestParsePeers(unittest.TestCase):
    """Tests for peer address parsing."""

    def test_parse_address(self):
        transport, peer_id = parse_peer_address(f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}")
        self.assertEqual(transport, "/ip4/10.0.0.1/tcp/4001")
        self.assertEqual(peer_id, PEER_A)

    def test_parse_bare_peer(self):
        transport, peer_id = parse_peer_address(f"/p2p/{PEER_A}")
        self.assertEqual(transport, "")
        self.assertEqual(peer_id, PEER_A)

    def test_malformed_addresses(self):
        for address in (
            "not-a-multiaddr",
            f"/ip4/10.0.0.1/tcp/port/p2p/{PEER_A}",
            "/ip4/10.0.0.1/tcp/4001",
        ):
            with self.assertRaises(PeerAddressError):
                parse_peer_address(address)

    def test_addresses_merged_by_peer(self):
        peers = parse_peers([
            f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}",
            f"/ip4/10.0.0.2/tcp/4001/p2p/{PEER_B}",
            f"/ip4/10.0.0.3/tcp/4001/p2p/{PEER_A}",
            f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}",
        ])
        self.assertEqual(set(peers), {PEER_A, PEER_B})
        # Merged in input order, duplicates kept
        self.assertEqual(peers[PEER_A], [
            "/ip4/10.0.0.1/tcp/4001",
            "/ip4/10.0.0.3/tcp/4001",
            "/ip4/10.0.0.1/tcp/4001",
        ])

    def test_one_bad_address_fails_all(self):
        with self.assertRaises(PeerAddressError):
            parse_peers([f"/p2p/{PEER_A}", "garbage"])


class TestPeerConnector(unittest.TestCase):
    """Tests for PeerConnector."""

    def test_no_peers(self):
        connector = PeerConnector([])
        self.assertEqual(connector.connect(FakeClient()), set())

    def test_connect_all(self):
        client = FakeClient()
        connector = PeerConnector([
            f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}",
            f"/ip4/10.0.0.3/tcp/4001/p2p/{PEER_A}",
            f"/p2p/{PEER_B}",
        ])
        self.assertEqual(connector.connect(client, timeout=1), {PEER_A, PEER_B})

        dialed = sorted(client.dialed)
        self.assertIn([f"/p2p/{PEER_B}"], dialed)
        self.assertIn([
            f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}",
            f"/ip4/10.0.0.3/tcp/4001/p2p/{PEER_A}",
        ], dialed)

    def test_failed_peer_does_not_affect_others(self):
        client = FakeClient()
        client.unreachable.add(PEER_B)
        connector = PeerConnector([
            f"/ip4/10.0.0.1/tcp/4001/p2p/{PEER_A}",
            f"/ip4/10.0.0.2/tcp/4001/p2p/{PEER_B}",
            f"/ip4/10.0.0.3/tcp/4001/p2p/{PEER_C}",
        ])
        with self.assertLogs("oss_store.ipfs.peers", level="WARNING"):
            connected = connector.connect(client)
        self.assertEqual(connected, {PEER_A, PEER_C})
        self.assertEqual(len(client.dialed), 3)


if __name__ == "__main__":
    unittest.main()
