"""Run the computer-use agent against an existing remote browser session"""
import asyncio
import argparse
import logging
from pathlib import Path

from agent import Orchestrator, RunHandle, StepResult
from config import load_config
from exceptions import ConfigurationError, CuaError, TransportError
from item_types import Session


logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def print_step(result: StepResult) -> None:
    for step in result.transcript:
        print(f"{step.step_number:>3}. [{step.tool}] {step.text}")
    for call in result.pending_calls:
        print(f"     pending {call.type} {call.call_id}")


async def drive(orchestrator: Orchestrator, handle: RunHandle, manual: bool) -> None:
    """Interactive loop: answer the model until the user ends the run."""
    result = handle.last_result
    while result is not None and not result.done:
        print_step(result)
        if result.pending_calls and manual:
            answer = await asyncio.to_thread(input, "Execute pending calls? [Y/n] ")
            if answer.strip().lower() in ("n", "no"):
                break
            result = await orchestrator.execute_pending(handle)
            continue
        if not result.awaiting_user:
            break
        text = await asyncio.to_thread(input, "> ")
        if not text.strip() or text.strip().lower() == "exit":
            break
        result = await orchestrator.continue_run(handle, text)
    if result is not None and result.cancelled:
        logger.info("Run cancelled")


async def main():
    parser = argparse.ArgumentParser(description="Drive a remote browser session with a computer-use model")
    parser.add_argument(
        "--goal",
        type=str,
        required=True,
        help="What the agent should accomplish"
    )
    parser.add_argument(
        "--session-id",
        type=str,
        required=True,
        help="Identifier of the remote browser session"
    )
    parser.add_argument(
        "--connect-url",
        type=str,
        required=True,
        help="CDP connect endpoint of the remote browser session"
    )
    parser.add_argument(
        "--initial-url",
        type=str,
        default=None,
        help="Open this page before the first model call"
    )
    parser.add_argument(
        "--live-view-url",
        type=str,
        default=None,
        help="Live-view URL of the session, printed as an embeddable viewer link"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON or YAML config file"
    )
    parser.add_argument(
        "--manual",
        action="store_true",
        help="Confirm each batch of actions before it runs"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config, {"manual": args.manual or None, "verbose": args.verbose or None})
    except ConfigurationError as e:
        logger.error(f"Config error: {e}")
        return
    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    session = Session(
        session_id=args.session_id,
        connect_endpoint=args.connect_url,
        viewport_width=config.browser.viewport_width,
        viewport_height=config.browser.viewport_height,
        region=config.browser.region,
        live_view_url=args.live_view_url,
    )
    if session.viewer_url:
        logger.info(f"Live view: {session.viewer_url}")

    orchestrator = Orchestrator.from_config(config, logger=logging.getLogger("cua_agent"))
    handle = orchestrator.create_run(session, args.goal, initial_url=args.initial_url)

    try:
        await orchestrator.begin_run(handle)
        await drive(orchestrator, handle, manual=not config.agent.auto_execute)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except TransportError as e:
        logger.error(f"Transport error: {e}")
    except CuaError as e:
        logger.error(f"Error: {e}", exc_info=True)
    finally:
        await orchestrator.end_run(handle)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
