"""
Microbot - Main Entry Point
===========================

This is the main entry point for the bot. It:
1. Loads configuration
2. Builds and initializes the agent (sessions, skills, memory, model)
3. Starts the WebSocket transport and, if tokens are set, Slack
4. Waits until SIGINT/SIGTERM, then shuts down

Run with:
    python -m microbot.main

Or after installing:
    microbot            # start the bot
    microbot status     # print configuration and skills, then exit
"""

import argparse
import asyncio
import signal
import sys

from microbot import __version__
from microbot.utils.config import Config, get_config, is_slack_configured
from microbot.utils.logger import Logger, set_log_level

main_logger = Logger("Main")


async def main() -> None:
    """
    Main async entry point.

    Initializes all components and runs the bot until a shutdown signal.
    """
    main_logger.info("Starting Microbot...")

    transports = []
    agent = None

    try:
        # 1. Load configuration
        main_logger.info("Loading configuration...")
        config = get_config()
        set_log_level(config.log_level)

        # 2. Create and initialize the agent
        main_logger.info("Creating agent...")
        from microbot.agent import Agent
        agent = Agent.from_config(config)
        await agent.initialize()

        # 3. WebSocket transport
        if config.websocket.enabled:
            from microbot.transport.websocket import TRANSPORT_TYPE, WebSocketTransport
            ws = WebSocketTransport(agent, config.websocket.host, config.websocket.port)
            agent.add_sink(TRANSPORT_TYPE, ws)
            await ws.start()
            transports.append(ws)

        # 4. Slack transport (optional)
        if is_slack_configured(config):
            main_logger.info("Starting Slack Socket Mode connection...")
            from microbot.transport.slack import TRANSPORT_TYPE as SLACK, SlackTransport
            slack = SlackTransport(agent, config.slack)
            agent.add_sink(SLACK, slack)
            await slack.start()
            transports.append(slack)
        else:
            main_logger.info("Slack tokens not set, Slack transport disabled")

        if not transports:
            main_logger.warning("No transports enabled; nothing to do")
            return

        # Set up graceful shutdown
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        main_logger.info("Microbot is running! Press Ctrl+C to stop.")
        await stop.wait()

    except Exception as e:
        main_logger.error("Failed to start bot", e)
        sys.exit(1)

    finally:
        await _shutdown(transports, agent)


async def _shutdown(transports: list, agent) -> None:
    """
    Graceful shutdown.

    Args:
        transports: Started transports, stopped in reverse order
        agent: The agent whose model client is closed
    """
    main_logger.info("Shutting down...")

    for transport in reversed(transports):
        try:
            await transport.stop()
        except Exception as e:
            main_logger.error(f"Error stopping {type(transport).__name__}", e)

    close = getattr(getattr(agent, "client", None), "aclose", None)
    if close is not None:
        await close()

    main_logger.info("Shutdown complete")


async def show_status(config: Config) -> str:
    """Render configuration and the skill catalog without starting transports."""
    from microbot.skills import SkillCatalog

    catalog = SkillCatalog()
    await catalog.load(config.paths.skills_dir)

    lines = [
        f"Microbot {__version__}",
        f"  Model:        {config.model.name} ({config.model.type})",
        f"  Max iters:    {config.loop.max_iterations}",
        f"  Skills dir:   {config.paths.skills_dir}",
        f"  Sessions dir: {config.paths.sessions_dir}",
        f"  WebSocket:    "
        + (f"{config.websocket.host}:{config.websocket.port}" if config.websocket.enabled else "disabled"),
        f"  Slack:        {'configured' if is_slack_configured(config) else 'not configured'}",
        f"  Skills:       {len(catalog)} loaded",
    ]
    for skill in catalog.all():
        marker = "" if skill.available else " (unavailable)"
        lines.append(f"    - {skill.name}{marker}: {skill.description}")
    return "\n".join(lines)


def run(argv: list[str] | None = None) -> None:
    """
    Synchronous entry point.

    This is called when running with `microbot` command.
    """
    parser = argparse.ArgumentParser(prog="microbot", description="Skill-driven chat agent")
    parser.add_argument("--version", action="version", version=f"microbot {__version__}")
    parser.add_argument("command", nargs="?", choices=("start", "status"), default="start")
    args = parser.parse_args(argv)

    try:
        if args.command == "status":
            print(asyncio.run(show_status(get_config())))
        else:
            asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
