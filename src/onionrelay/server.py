"""
HTTP endpoints for the registry, relays and users, served with aiohttp.web.

Port layout comes from ``NetworkConfig``: the registry on ``registry_port``,
relay ``n`` on ``base_onion_router_port + n`` and user ``n`` on
``base_user_port + n``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field

import aiohttp
from aiohttp import web

from .config import ConfigModel
from .network import HttpTransport, MessageInput
from .registry import Directory, RegistryClient
from .relay import OnionRelay, RelayContext
from .robustness import (
    DuplicateNode,
    ForwardingFailure,
    InsufficientParticipants,
    MalformedLayer,
    MissingMessage,
    OnionError,
)
from .user import OnionUser

logger = logging.getLogger(__name__)

RELAY_KEY = web.AppKey("relay", OnionRelay)
USER_KEY = web.AppKey("user", OnionUser)
DIRECTORY_KEY = web.AppKey("directory", Directory)


async def _read_json(request: web.Request):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError, web.HTTPBadRequest):
        return None
    return body if isinstance(body, dict) else None


async def handle_status(request: web.Request) -> web.Response:
    return web.Response(text="live")


# ----- registry -----


async def handle_register_node(request: web.Request) -> web.Response:
    directory = request.app[DIRECTORY_KEY]
    body = await _read_json(request) or {}
    try:
        directory.register(body.get("nodeId"), body.get("pubKey"))
    except (ValueError, DuplicateNode) as e:
        return web.json_response({"error": str(e)}, status=400)
    return web.json_response({"message": "Node registered successfully"})


async def handle_get_node_registry(request: web.Request) -> web.Response:
    directory = request.app[DIRECTORY_KEY]
    return web.json_response({"nodes": [node.to_dict() for node in directory.list_participants()]})


def create_registry_app(directory: Directory | None = None) -> web.Application:
    app = web.Application()
    app[DIRECTORY_KEY] = directory if directory is not None else Directory()
    app.router.add_get("/status", handle_status)
    app.router.add_post("/registerNode", handle_register_node)
    app.router.add_get("/getNodeRegistry", handle_get_node_registry)
    app.router.add_get("/nodes", handle_get_node_registry)
    return app


# ----- relay -----


def _state_getter(read):
    async def handler(request: web.Request) -> web.Response:
        return web.json_response({"result": read()})

    return handler


async def handle_relay_message(request: web.Request) -> web.Response:
    relay = request.app[RELAY_KEY]
    body = await _read_json(request)
    try:
        outcome = await relay.receive(MessageInput.from_body(body))
    except MissingMessage as e:
        return web.json_response({"error": str(e)}, status=400)
    except MalformedLayer as e:
        return web.json_response({"error": f"Malformed layer: {e}"}, status=400)
    except ForwardingFailure as e:
        return web.json_response({"error": str(e)}, status=502)

    if outcome.delivered:
        return web.json_response({"status": outcome.status, "message": outcome.message})
    return web.json_response({"status": outcome.status})


def create_relay_app(relay: OnionRelay) -> web.Application:
    app = web.Application()
    app[RELAY_KEY] = relay
    state = relay.state
    app.router.add_get("/status", handle_status)
    app.router.add_get(
        "/getLastReceivedEncryptedMessage", _state_getter(lambda: state.last_received_encrypted_message)
    )
    app.router.add_get(
        "/getLastReceivedDecryptedMessage", _state_getter(lambda: state.last_received_decrypted_message)
    )
    app.router.add_get("/getLastMessageDestination", _state_getter(lambda: state.last_message_destination))
    app.router.add_get("/getPrivateKey", _state_getter(relay.private_key_export))
    app.router.add_post("/message", handle_relay_message)
    return app


# ----- user -----


async def handle_user_message(request: web.Request) -> web.Response:
    user = request.app[USER_KEY]
    body = await _read_json(request)
    try:
        user.receive(MessageInput.from_body(body))
    except MissingMessage:
        return web.json_response({"error": "Message is required"}, status=400)
    return web.Response(text="success")


async def handle_send_message(request: web.Request) -> web.Response:
    user = request.app[USER_KEY]
    body = await _read_json(request) or {}
    message = body.get("message")
    destination = body.get("destinationUserId")
    if not isinstance(message, str) or not isinstance(destination, int) or isinstance(destination, bool):
        return web.json_response({"error": "message and destinationUserId are required"}, status=400)

    try:
        circuit = await user.send_message(message, destination)
    except InsufficientParticipants as e:
        return web.json_response({"error": str(e)}, status=500)
    except OnionError as e:
        return web.json_response({"error": str(e)}, status=502)
    return web.json_response({"status": "Message successfully transmitted", "circuit": circuit})


def create_user_app(user: OnionUser) -> web.Application:
    app = web.Application()
    app[USER_KEY] = user
    state = user.state
    app.router.add_get("/status", handle_status)
    app.router.add_get("/getLastReceivedMessage", _state_getter(lambda: state.last_received_message))
    app.router.add_get("/getLastSentMessage", _state_getter(lambda: state.last_sent_message))
    app.router.add_get("/getLastCircuit", _state_getter(lambda: state.last_circuit))
    app.router.add_post("/message", handle_user_message)
    app.router.add_post("/sendMessage", handle_send_message)
    return app


# ----- process wiring -----


@dataclass
class Network:
    """Every running site of a launched overlay, for shutdown."""

    runners: list[web.AppRunner] = field(default_factory=list)
    relays: list[OnionRelay] = field(default_factory=list)
    users: list[OnionUser] = field(default_factory=list)
    session: aiohttp.ClientSession | None = None

    async def stop(self):
        for runner in reversed(self.runners):
            await runner.cleanup()
        if self.session is not None:
            await self.session.close()
        logger.info("Network stopped")


async def _serve(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    return runner


async def launch_network(settings: ConfigModel, relay_count: int, user_count: int) -> Network:
    """Start a registry, ``relay_count`` relays and ``user_count`` users."""
    net = settings.network
    session = aiohttp.ClientSession()
    network = Network(session=session)
    transport = HttpTransport(host=net.host, session=session)
    rng = random.Random(settings.circuit.seed)

    try:
        network.runners.append(await _serve(create_registry_app(), net.bind_host, net.registry_port))
        logger.info(f"Registry is listening on port {net.registry_port}")

        registry = RegistryClient(f"http://{net.host}:{net.registry_port}", session=session)
        for node_id in range(relay_count):
            context = RelayContext.create(node_id, net.base_onion_router_port)
            relay = OnionRelay(context, transport, net.recipient_threshold)
            network.runners.append(await _serve(create_relay_app(relay), net.bind_host, context.address))
            network.relays.append(relay)
            logger.info(f"Onion router {node_id} is listening on port {context.address}")
            await registry.register(node_id, context.public_key_b64)

        for user_id in range(user_count):
            user = OnionUser(user_id, registry, transport, network=net, rng=rng)
            network.runners.append(await _serve(create_user_app(user), net.bind_host, user.address))
            network.users.append(user)
            logger.info(f"User {user_id} is listening on port {user.address}")
    except BaseException:
        await network.stop()
        raise

    return network


async def serve_forever(settings: ConfigModel, relay_count: int, user_count: int) -> None:
    network = await launch_network(settings, relay_count, user_count)
    try:
        await asyncio.Event().wait()
    finally:
        await network.stop()
