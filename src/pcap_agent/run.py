# run.py
# Entry point. Config and wiring only. No logic lives here.
#
# Swap PCAP_AGENT_MODEL for any model the configured endpoint serves.
# https://openrouter.ai/models

import argparse
import logging
import sys

from rich.logging import RichHandler

from pcap_agent import display
from pcap_agent.agent import CancelToken, OpenAIChatAgent
from pcap_agent.compaction import ContextCompactor
from pcap_agent.config import Settings
from pcap_agent.errors import LedgerError
from pcap_agent.events import EventChannel, JsonlEventSink
from pcap_agent.executor import Executor
from pcap_agent.ledger import RoundLedger, Session
from pcap_agent.pipeline import Investigation
from pcap_agent.planner import Planner
from pcap_agent.tokens import TiktokenCounter

QUIT_COMMANDS = {"quit", "exit", ":q"}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pcap-agent", description="Investigate a packet capture in rounds.")
    parser.add_argument("pcap_path", nargs="?", help="Path of the capture, as seen by the agent's sandbox.")
    parser.add_argument("--session", help="Resume an existing session id.")
    parser.add_argument("--db", help="Session ledger database (default: $PCAP_AGENT_DB_PATH or pcap_agent.db).")
    parser.add_argument("--model", help="Model name (default: $PCAP_AGENT_MODEL).")
    parser.add_argument("--list", action="store_true", help="List recorded sessions and exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show pipeline logs.")
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True, show_path=False)],
    )


def build_agent(settings: Settings) -> OpenAIChatAgent:
    """
    Chat agent with context compaction installed as its message rewriter.

    Planner and executor calls carry only a system and a user message, so the
    compactor has no older history to fold until a multi-turn tool loop runs
    behind the Agent protocol. Until then it passes messages through.
    """
    summarizer = OpenAIChatAgent(model=settings.model, base_url=settings.base_url, api_key=settings.api_key)
    compactor = ContextCompactor(summarizer, TiktokenCounter(), settings.compaction())
    return OpenAIChatAgent(
        model=settings.model,
        base_url=settings.base_url,
        api_key=settings.api_key,
        message_rewriter=compactor.compact,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env()
    if args.db:
        settings.db_path = args.db
    if args.model:
        settings.model = args.model
    configure_logging(args.verbose)

    ledger = RoundLedger(settings.db_path)

    if args.list:
        display.sessions_table(ledger.list_sessions())
        ledger.close()
        return 0

    try:
        if args.session:
            session = Session.resume(ledger, args.session)
        elif args.pcap_path:
            session = Session.create(ledger, args.pcap_path)
        else:
            display.halt("A capture path or --session is required.")
            return 2
    except LedgerError as exc:
        display.halt(str(exc))
        return 1

    channel = EventChannel()
    printer = display.ConsolePrinter()
    printer.start(channel)
    sink = None
    if settings.event_log:
        sink = JsonlEventSink(settings.event_log)
        sink.start(channel)

    bound = channel.bind(session.id)
    agent = build_agent(settings)
    investigation = Investigation(Planner(agent, bound), Executor(agent, bound), session, bound)

    display.banner(settings.model, session.pcap_path, session.id, session.round_num)
    try:
        while True:
            try:
                query = display.console.input("\n[bold cyan]query>[/bold cyan] ").strip()
            except EOFError:
                break
            if not query:
                continue
            if query.lower() in QUIT_COMMANDS:
                break

            display.prompt_received(query, session.round_num + 1)
            cancel = CancelToken(settings.timeout)
            try:
                outcome = investigation.run_round(query, cancel)
            except KeyboardInterrupt:
                cancel.cancel()
                display.halt("Round interrupted. No report produced for this query.")
                continue

            if outcome.ok:
                display.final_report(outcome.report)
                if outcome.ledger_error:
                    display.ledger_warning(outcome.ledger_error)
            else:
                display.halt(outcome.error or "No report produced for this query.")
    except KeyboardInterrupt:
        pass
    finally:
        channel.close()
        printer.join(timeout=2)
        if sink is not None:
            sink.join(timeout=2)
        ledger.close()

    display.console.print(f"[dim]Session {session.id} saved. Resume with --session {session.id}[/dim]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
