"""
Best-effort dial-out to the configured peers.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Set

from multiaddr import Multiaddr

from oss_store.core.exceptions import OSSError, PeerAddressError


logger = logging.getLogger(__name__)


def parse_peer_address(address: str):
    """
    Split a peer multiaddr into its transport address and peer identity.

    Args:
        address: Multiaddr ending in ``/p2p/<peer id>``

    Returns:
        Tuple of (transport address, peer id); the transport address is an
        empty string when ``address`` is only ``/p2p/<peer id>``

    Raises:
        PeerAddressError: If the address is malformed or names no peer
    """
    try:
        maddr = Multiaddr(address)
    except (ValueError, LookupError, TypeError) as e:
        raise PeerAddressError(f"bad multiaddr '{address}': {e}") from e

    try:
        peer_id = maddr.value_for_protocol("p2p")
    except LookupError as e:
        raise PeerAddressError(f"multiaddr '{address}' has no /p2p/ peer id") from e
    if not peer_id:
        raise PeerAddressError(f"multiaddr '{address}' has no /p2p/ peer id")

    if len(maddr.protocols()) == 1:
        return "", peer_id
    return str(maddr.decapsulate(Multiaddr(f"/p2p/{peer_id}"))), peer_id


def parse_peers(addresses: Iterable[str]) -> Dict[str, List[str]]:
    """
    Group peer addresses by peer identity.

    Addresses of the same peer are merged into one list, in input order,
    without removing duplicates.

    Raises:
        PeerAddressError: On the first malformed address
    """
    grouped: Dict[str, List[str]] = {}
    for address in addresses:
        transport, peer_id = parse_peer_address(address)
        transports = grouped.setdefault(peer_id, [])
        if transport:
            transports.append(transport)
    return grouped


class PeerConnector:
    """
    Dials the configured peers of a node.

    Addresses are parsed up front so malformed input fails before any dial.
    Each distinct peer is dialed on its own worker; a peer that fails or
    times out is logged and does not affect the others.
    """

    def __init__(self, addresses: Iterable[str]):
        self.peers = parse_peers(addresses)

    def connect(self, client: Any, timeout: Optional[float] = None) -> Set[str]:
        """
        Dial every peer and wait for all dials to finish.

        Args:
            client: Content API client with ``swarm_connect``
            timeout: Optional timeout in seconds for each dial

        Returns:
            Set of peer ids that connected
        """
        if not self.peers:
            return set()

        connected: Set[str] = set()
        with ThreadPoolExecutor(max_workers=len(self.peers), thread_name_prefix="peer-dial") as executor:
            futures = {
                executor.submit(self._dial, client, peer_id, transports, timeout): peer_id
                for peer_id, transports in self.peers.items()
            }
            wait(futures)

        for future, peer_id in futures.items():
            error = future.exception()
            if error is not None:
                logger.warning(f"failed to connect to {peer_id}: {error}")
            elif future.result():
                connected.add(peer_id)

        logger.info(f"Connected to {len(connected)} of {len(self.peers)} peers")
        return connected

    @staticmethod
    def _dial(client: Any, peer_id: str, transports: List[str], timeout: Optional[float]) -> bool:
        addresses = [f"{transport}/p2p/{peer_id}" for transport in transports] or [f"/p2p/{peer_id}"]
        try:
            client.swarm_connect(addresses, timeout=timeout)
        except OSSError as e:
            logger.warning(f"failed to connect to {peer_id}: {e}")
            return False
        logger.debug(f"Connected to {peer_id}")
        return True
