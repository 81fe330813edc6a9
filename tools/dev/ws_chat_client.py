#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
conv-runtime — Dev WebSocket Chat Client (/ws)
----------------------------------------------
Interactive console tool for talking to the relay over WebSocket.

Features:
- Sends `session.start` on every (re)connect. Re-starting an existing session
  only re-binds language/subject, so history survives reconnects.
- Simple REPL: each line becomes a `user.message`; frames are printed until
  the matching `assistant.message` or `protocol.error` arrives.
- Prints `assistant.delta` chunks inline when the server streams.
- AUTO-RECONNECT with backoff. If the connection drops after a question was
  sent but before its answer arrived, the question is resent after reconnect.
- `/ping` sends a heartbeat.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

DEFAULT_SERVER = "ws://127.0.0.1:3000/ws"
PROTOCOL_VERSION = "1"
TERMINAL_TYPES = {"assistant.message", "protocol.error", "heartbeat.ack", "session.ready"}


class PendingMessage(Exception):
    """Connection lost while waiting for the reply to `payload`."""

    def __init__(self, payload: Dict[str, Any]) -> None:
        super().__init__("Connection lost with a pending message.")
        self.payload = payload


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="conv-runtime — Dev WebSocket Chat Client (/ws)",
    )
    parser.add_argument(
        "--server",
        default=DEFAULT_SERVER,
        help=f"WebSocket server URL (default: {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--session",
        default=None,
        help="session_id to use (default: random per run).",
    )
    parser.add_argument("--language", default="es", help="Session language (default: es).")
    parser.add_argument(
        "--subject",
        default="dev-subject",
        help="subject_reference sent in session.start.",
    )
    args = parser.parse_args()
    if not args.session:
        args.session = f"dev-{uuid.uuid4().hex[:8]}"
    return args


def frame(args: argparse.Namespace, msg_type: str, **fields: Any) -> Dict[str, Any]:
    return {
        "protocol_version": PROTOCOL_VERSION,
        "type": msg_type,
        "session_id": args.session,
        **fields,
    }


async def exchange(ws: Any, payload: Dict[str, Any]) -> None:
    """Send one frame and print server frames until a terminal one arrives."""
    await ws.send(json.dumps(payload, ensure_ascii=False))
    streamed = False

    while True:
        try:
            raw = await ws.recv()
        except ConnectionClosed as exc:
            raise PendingMessage(payload) from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            print(f"Raw response (not JSON): {raw}")
            continue

        msg_type = data.get("type")
        if msg_type == "assistant.thinking":
            print("  ...", flush=True)
        elif msg_type == "assistant.delta":
            print(data.get("text", ""), end="", flush=True)
            streamed = True
        elif msg_type == "assistant.message":
            if streamed:
                print()
            print(f"\nAssistant: {data.get('text')}")
            if data.get("confidence") is not None:
                print(f"  confidence = {data['confidence']}")
            print()
        elif msg_type == "protocol.error":
            print(f"Server error: {data.get('code')} - {data.get('message')}\n")
        elif msg_type == "session.ready":
            print(
                f"[client] session {data.get('session_id')} ready "
                f"(lang={data.get('language')}, caps={data.get('capabilities')})\n"
            )
        elif msg_type == "heartbeat.ack":
            print("[client] heartbeat ack\n")
        else:
            print(f"[client] unexpected frame: {data}")

        if msg_type in TERMINAL_TYPES:
            return


async def run_single_session(
    args: argparse.Namespace,
    pending_payload: Optional[Dict[str, Any]] = None,
) -> None:
    """One connect -> start -> chat cycle."""
    async with websockets.connect(args.server, ping_interval=None, ping_timeout=None) as ws:
        print(f"Connected to {args.server} as session {args.session}.")
        print("Type a message and press Enter. /ping sends a heartbeat, /quit exits.\n")

        await exchange(
            ws,
            frame(args, "session.start", language=args.language, subject_reference=args.subject),
        )

        if pending_payload is not None:
            print("[client] Re-sending last unanswered message after reconnect...\n")
            await exchange(ws, pending_payload)

        while True:
            try:
                text = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                raise KeyboardInterrupt

            if not text:
                continue
            if text.lower() in {"/quit", "/exit"}:
                raise KeyboardInterrupt
            if text.lower() == "/ping":
                await exchange(ws, frame(args, "heartbeat"))
                continue

            await exchange(ws, frame(args, "user.message", text=text))


async def run_with_reconnect(args: argparse.Namespace) -> None:
    """Reconnect loop; backoff 3s, 6s, 9s ... capped at 30s."""
    attempt = 0
    base_delay = 3
    pending_payload: Optional[Dict[str, Any]] = None

    while True:
        attempt += 1
        try:
            print(f"Connecting to '{args.server}' (attempt {attempt}) ...")
            await run_single_session(args, pending_payload=pending_payload)
            return
        except KeyboardInterrupt:
            print("\nBye.")
            return
        except PendingMessage as exc:
            pending_payload = exc.payload
            print("\n[client] Connection closed with a pending message; will resend.")
        except ConnectionClosed as exc:
            pending_payload = None
            print(f"\nConnection closed: {exc}")
        except OSError as exc:
            pending_payload = None
            print(f"\nConnection error: {exc}")

        delay = min(base_delay * attempt, 30)
        print(f"Reconnecting in {delay} seconds... (Ctrl+C to stop)")
        await asyncio.sleep(delay)


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(run_with_reconnect(args))
    except KeyboardInterrupt:
        print("\nBye.")
        sys.exit(0)


if __name__ == "__main__":
    main()
