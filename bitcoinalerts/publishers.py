"""Channel publishers: deliver one notification to ntfy, Nostr or Matrix."""

import hashlib
import json
import time
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import coincurve
import requests
import websocket

from .constants import DEFAULT_HTTP_TIMEOUT_SECS, NOTIFICATION_TITLE
from .logging import get_logger
from .notification_queue import Notification

logger = get_logger(__name__)


class Publisher:
    """Delivers notifications to one channel.

    ``publish`` reports success as a bool and never raises: failures are
    logged here and the dispatcher keeps the row for the next cycle.
    """

    name = "publisher"

    def publish(self, notification: Notification) -> bool:
        raise NotImplementedError

    def start(self) -> None:
        """Hook run once when the channel's dispatcher starts."""

    def close(self) -> None:
        """Release network resources."""


def _proxies(proxy: Optional[str]) -> Dict[str, str]:
    return {"http": proxy, "https": proxy} if proxy else {}


class NtfyPublisher(Publisher):
    """Publishes plain-text messages to an ntfy topic."""

    name = "ntfy"

    def __init__(
        self,
        url: str,
        topic: str,
        title: str = NOTIFICATION_TITLE,
        priority: str = "default",
        token: str = "",
        proxy: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECS,
    ):
        self.endpoint = f"{url.rstrip('/')}/{topic}"
        self.timeout = timeout
        self.session = requests.Session()
        self.session.proxies.update(_proxies(proxy))
        self.session.headers["Title"] = title
        self.session.headers["Priority"] = priority
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def publish(self, notification: Notification) -> bool:
        try:
            resp = self.session.post(
                self.endpoint,
                data=notification.plain_text.encode("utf-8"),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to post to ntfy {self.endpoint}: {e}")
            return False

        if resp.status_code >= 400:
            logger.warning(f"ntfy returned status {resp.status_code}: {resp.text[:200]}")
            return False
        return True

    def close(self) -> None:
        self.session.close()


def compute_event_id(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> str:
    """NIP-01 event id: sha256 of the canonical serialization."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def leading_zero_bits(hex_id: str) -> int:
    """NIP-13 difficulty of an event id."""
    value = int(hex_id, 16)
    return len(hex_id) * 4 - value.bit_length()


class NostrPublisher(Publisher):
    """Signs text notes and sends them to a set of relays.

    A notification counts as delivered when at least one relay accepts it.
    """

    name = "nostr"

    def __init__(
        self,
        secret_key: str,
        relays: List[str],
        pow_difficulty: int = 0,
        publish_metadata: bool = True,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECS,
        connect: Callable = websocket.create_connection,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        secret = bytes.fromhex(secret_key)
        self._private_key = coincurve.PrivateKey(secret)
        self.public_key = coincurve.PublicKeyXOnly.from_secret(secret).format().hex()
        self.relays = list(relays)
        self.pow_difficulty = pow_difficulty
        self.publish_metadata = publish_metadata
        self.timeout = timeout
        self._connect = connect
        self._clock = clock
        self._monotonic = monotonic

    def build_event(self, kind: int, content: str, tags: Optional[List[List[str]]] = None) -> Dict:
        """Create a signed event, mining a nonce tag when PoW is enabled."""
        tags = [list(t) for t in (tags or [])]
        created_at = int(self._clock())

        if self.pow_difficulty > 0:
            nonce_tag = ["nonce", "0", str(self.pow_difficulty)]
            tags.append(nonce_tag)
            nonce = 0
            while True:
                nonce_tag[1] = str(nonce)
                event_id = compute_event_id(self.public_key, created_at, kind, tags, content)
                if leading_zero_bits(event_id) >= self.pow_difficulty:
                    break
                nonce += 1
        else:
            event_id = compute_event_id(self.public_key, created_at, kind, tags, content)

        signature = self._private_key.sign_schnorr(bytes.fromhex(event_id))
        return {
            "id": event_id,
            "pubkey": self.public_key,
            "created_at": created_at,
            "kind": kind,
            "tags": tags,
            "content": content,
            "sig": signature.hex(),
        }

    def _send_to_relay(self, relay: str, event: Dict) -> bool:
        try:
            ws = self._connect(relay, timeout=self.timeout)
        except (websocket.WebSocketException, OSError) as e:
            logger.error(f"Impossible to connect to relay {relay}: {e}")
            return False

        # One deadline for the whole exchange, however many frames the relay sends
        deadline = self._monotonic() + self.timeout
        try:
            ws.send(json.dumps(["EVENT", event]))
            while True:
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    logger.error(f"Relay {relay} did not acknowledge event {event['id']} in {self.timeout} sec")
                    return False
                ws.settimeout(remaining)
                reply = json.loads(ws.recv())
                if isinstance(reply, list) and reply[:2] == ["OK", event["id"]] and len(reply) >= 3:
                    accepted = reply[2] is True
                    if not accepted:
                        logger.warning(f"Relay {relay} rejected event {event['id']}: {reply[3:]}")
                    return accepted
                logger.debug(f"Relay {relay}: {reply}")
        except (websocket.WebSocketException, OSError, ValueError) as e:
            logger.error(f"Failed to send event to relay {relay}: {e}")
            return False
        finally:
            ws.close()

    def send_event(self, event: Dict) -> bool:
        accepted = [relay for relay in self.relays if self._send_to_relay(relay, event)]
        logger.debug(f"Event {event['id']} accepted by {len(accepted)}/{len(self.relays)} relays")
        return bool(accepted)

    def start(self) -> None:
        if not self.publish_metadata:
            return
        metadata = {
            "name": "bitcoin_alerts",
            "display_name": NOTIFICATION_TITLE,
            "about": "Hashrate, supply, blocks until halving, difficulty adjustment and more.",
        }
        if not self.send_event(self.build_event(0, json.dumps(metadata))):
            logger.error("Impossible to set metadata")

    def publish(self, notification: Notification) -> bool:
        return self.send_event(self.build_event(1, notification.plain_text))


class MatrixPublisher(Publisher):
    """Sends messages to Matrix rooms through the client-server API.

    The transaction id is derived from the notification id, so a retry after
    a partial failure is deduplicated by the homeserver for rooms that
    already received it.
    """

    name = "matrix"

    def __init__(
        self,
        homeserver_url: str,
        access_token: str,
        room_ids: List[str],
        proxy: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECS,
    ):
        self.homeserver_url = homeserver_url.rstrip("/")
        self.room_ids = list(room_ids)
        self.timeout = timeout
        self.session = requests.Session()
        self.session.proxies.update(_proxies(proxy))
        self.session.headers["Authorization"] = f"Bearer {access_token}"

    def _send_to_room(self, room_id: str, notification: Notification) -> bool:
        url = (
            f"{self.homeserver_url}/_matrix/client/v3/rooms/{quote(room_id, safe='')}"
            f"/send/m.room.message/bitcoin-alerts-{notification.id}"
        )
        content = {
            "msgtype": "m.text",
            "body": notification.plain_text,
            "format": "org.matrix.custom.html",
            "formatted_body": notification.html,
        }
        try:
            resp = self.session.put(url, json=content, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Failed to send to room {room_id}: {e}")
            return False

        if resp.status_code >= 400:
            logger.warning(f"Matrix returned status {resp.status_code} for room {room_id}: {resp.text[:200]}")
            return False
        return True

    def publish(self, notification: Notification) -> bool:
        if not self.room_ids:
            logger.debug(f"No Matrix rooms configured, dropping notification {notification.id}")
            return True
        results = [self._send_to_room(room_id, notification) for room_id in self.room_ids]
        return all(results)

    def close(self) -> None:
        self.session.close()
