"""
Run one voice agent worker from the command line.

Usage:
    python -m voice_agent --room support-room-1 [--voice nova] [--scenario consultation] [--debug]

Uses LIVEKIT_AGENT_TOKEN when set, otherwise mints an agent token from
LIVEKIT_API_KEY / LIVEKIT_API_SECRET. Runs until interrupted.
"""
import argparse
import asyncio
import os
import signal

from logging_setup import get_logger, Component, setup_logging
from .config import AgentConfig, Voice, load_local_env
from .worker import VoiceAgentWorker

logger = get_logger(Component.VOICE_AGENT)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="voice_agent", description="Run an AI voice agent in a LiveKit room")
    parser.add_argument("--room", required=True, help="LiveKit room name")
    parser.add_argument("--voice", choices=[v.value for v in Voice], help="Synthesis voice (default: AGENT_VOICE or alloy)")
    parser.add_argument("--scenario", help="Prompt scenario (default: AGENT_SCENARIO or default)")
    parser.add_argument("--identity", help="Agent participant identity")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> AgentConfig:
    config = AgentConfig.from_env(flow=args.scenario)
    if args.voice:
        config.voice = Voice(args.voice)
    if args.debug:
        config.debug = True
    if not config.session_token:
        from control_plane.tokens import generate_agent_token

        config.session_token = generate_agent_token(
            args.room,
            identity=args.identity,
            voice=config.voice,
            system_prompt=config.system_prompt,
        )
    return config


async def _run(config: AgentConfig, room: str) -> None:
    worker = VoiceAgentWorker(config, session_id=room)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        await worker.start()
        waiters = [
            asyncio.create_task(stop_event.wait()),
            asyncio.create_task(worker.wait_closed()),
        ]
        try:
            # Either a signal or the room going away ends the run.
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
    finally:
        await worker.stop()


def main(argv=None) -> None:
    args = _parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    load_local_env()

    config = _build_config(args)
    try:
        asyncio.run(_run(config, args.room))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
