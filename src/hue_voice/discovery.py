from __future__ import annotations

import argparse
import asyncio
import json
import logging
import socket
import sys
import time
import urllib.parse
from dataclasses import dataclass, replace
from typing import Any

import httpx

from hue_voice.config import AppConfig
from hue_voice.hue_client import HueTransportError

logger = logging.getLogger(__name__)

SSDP_ADDR = ("239.255.255.250", 1900)


@dataclass(frozen=True)
class DiscoveredBridge:
    ip: str
    source: str  # config | nupnp | ssdp
    bridge_id: str | None = None
    location: str | None = None
    raw: dict[str, Any] | None = None


def _parse_httpish_headers(packet: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in packet.splitlines():
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()
    return headers


def _ip_from_location(location: str) -> str | None:
    try:
        parsed = urllib.parse.urlparse(location)
    except ValueError:
        return None
    return parsed.hostname or None


def _looks_like_hue_response(packet: str, headers: dict[str, str]) -> bool:
    # Hue bridges answer M-SEARCH with "IpBridge" in SERVER and a hue-bridgeid header.
    if "hue-bridgeid" in headers:
        return True
    return "ipbridge" in headers.get("server", "").lower() or "ipbridge" in packet.lower()


def ssdp_discover(*, timeout_seconds: float = 3.0, st: str = "ssdp:all") -> list[DiscoveredBridge]:
    msg = "\r\n".join(
        [
            "M-SEARCH * HTTP/1.1",
            f"HOST: {SSDP_ADDR[0]}:{SSDP_ADDR[1]}",
            "MAN: ssdp:discover",
            "MX: 3",
            f"ST: {st}",
            "",
            "",
        ]
    ).encode("utf-8")

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(0.2)
        sock.sendto(msg, SSDP_ADDR)

        deadline = time.time() + timeout_seconds
        found: dict[str, DiscoveredBridge] = {}

        while time.time() < deadline:
            try:
                data, addr = sock.recvfrom(65535)
            except socket.timeout:
                continue
            packet = data.decode("utf-8", "ignore")
            headers = _parse_httpish_headers(packet)
            if not _looks_like_hue_response(packet, headers):
                continue

            location = headers.get("location")
            ip = (_ip_from_location(location) if location else None) or addr[0]
            found[ip] = DiscoveredBridge(
                ip=ip,
                source="ssdp",
                bridge_id=headers.get("hue-bridgeid"),
                location=location,
                raw={"headers": headers, "from": addr[0]},
            )

        return list(found.values())
    finally:
        sock.close()


def _parse_nupnp(payload: Any) -> list[DiscoveredBridge]:
    # Example: [{"id":"001788fffe096103","internalipaddress":"192.168.2.129","port":443}]
    if not isinstance(payload, list):
        return []
    bridges: list[DiscoveredBridge] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        ip = item.get("internalipaddress")
        if not isinstance(ip, str) or not ip.strip():
            continue
        bridge_id = item.get("id")
        bridges.append(
            DiscoveredBridge(
                ip=ip.strip(),
                source="nupnp",
                bridge_id=bridge_id if isinstance(bridge_id, str) else None,
                raw=item,
            )
        )
    return bridges


class BridgeDiscovery:
    """Finds bridges on the LAN.

    Order: a configured host wins outright, then the Hue N-UPnP cloud lookup,
    then SSDP multicast when the cloud lookup comes back empty.
    """

    def __init__(self, *, config: AppConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def nupnp_discover(self) -> list[DiscoveredBridge]:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.discovery_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(self._config.discovery_url)
        except httpx.HTTPError as exc:
            raise HueTransportError(f"bridge discovery failed: {exc}") from exc
        if resp.status_code != 200:
            raise HueTransportError(f"bridge discovery failed: HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise HueTransportError("bridge discovery returned invalid JSON") from exc
        return _parse_nupnp(payload)

    async def discover(self) -> list[DiscoveredBridge]:
        if self._config.bridge_host:
            return [DiscoveredBridge(ip=self._config.bridge_host, source="config")]

        try:
            bridges = await self.nupnp_discover()
        except HueTransportError as exc:
            if not self._config.discovery_ssdp:
                raise
            logger.warning("N-UPnP discovery failed, trying SSDP: %s", exc)
            bridges = []
        logger.debug("N-UPnP discovery returned %d bridge(s)", len(bridges))
        if not bridges and self._config.discovery_ssdp:
            bridges = await asyncio.to_thread(
                ssdp_discover, timeout_seconds=self._config.discovery_timeout_seconds
            )
            logger.debug("SSDP discovery returned %d bridge(s)", len(bridges))

        # De-dupe by IP, keeping discovery order.
        by_ip: dict[str, DiscoveredBridge] = {}
        for bridge in bridges:
            by_ip.setdefault(bridge.ip, bridge)
        return list(by_ip.values())


def _print_bridges(bridges: list[DiscoveredBridge], *, json_out: bool) -> None:
    if json_out:
        print(
            json.dumps(
                [{"ip": b.ip, "source": b.source, "id": b.bridge_id, "location": b.location} for b in bridges],
                indent=2,
            )
        )
        return

    if not bridges:
        print("No Hue bridges discovered.")
        return

    for i, b in enumerate(bridges, start=1):
        label = b.bridge_id or "Hue Bridge"
        print(f"{i}) {b.ip} - {label} ({b.source})")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="hue-voice-discover")
    parser.add_argument("--timeout-seconds", type=float, default=None)
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--no-ssdp", action="store_true", help="Skip SSDP fallback")
    args = parser.parse_args(argv)

    config = AppConfig.from_env()
    overrides: dict[str, Any] = {"bridge_host": None}
    if args.timeout_seconds is not None:
        overrides["discovery_timeout_seconds"] = args.timeout_seconds
    if args.no_ssdp:
        overrides["discovery_ssdp"] = False
    discovery = BridgeDiscovery(config=replace(config, **overrides))
    try:
        bridges = asyncio.run(discovery.discover())
    except HueTransportError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1)

    _print_bridges(bridges, json_out=args.json)


if __name__ == "__main__":
    main()
