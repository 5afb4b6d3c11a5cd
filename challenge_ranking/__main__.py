"""
CLI entry point for the challenge ranking engine.

Parses arguments, validates config, and wires components.
"""

import argparse
import json
import sys
from argparse import Namespace
from datetime import date
from pathlib import Path
from typing import TypedDict

from prettytable import PrettyTable

from .engine import EngineConfig, RankingEngine, VotingSession, utc_today, voting_challenge_date
from .exceptions import (
    ConfigurationError,
    DuplicatePairError,
    InsufficientSubmissions,
    NoMorePairs,
    RankingError,
    ValidationError,
)
from .logging_config import get_logger, setup_logging
from .models import RankedEntry
from .pair_selectors import SELECTOR_NAMES
from .rankers.elo import K_FACTOR
from .rankers.rank_resolver import RankNumbering
from .simulation import Simulation, SimulationConfig, load_ground_truth
from .storage.memory_storage import MemoryStore
from .storage.sqlite_storage import SQLiteStore
from .voting_rules import DEFAULT_REQUIRED_VOTES, vote_progress_percentage


class CLIArgs(TypedDict):
    """Typed representation of parsed CLI arguments."""
    command: str
    db: str
    user: str | None
    challenge_date: str | None
    submission_a: str | None
    submission_b: str | None
    winner: str | None
    submission_id: str | None
    payload: str | None
    limit: int | None
    ground_truth: str | None
    days: int
    noise: float
    in_memory: bool
    selector: str
    seed: int | None
    k_factor: int
    max_required_votes: int
    numbering: str
    include_all: bool
    debug: bool
    log_level: str
    log_dir: str


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Challenge Ranking - Daily Pairwise Voting Engine"
    )

    _ = parser.add_argument(
        "--db",
        default="challenge_ranking.db",
        help="Path to the SQLite database (default: challenge_ranking.db)"
    )
    _ = parser.add_argument(
        "--selector",
        choices=SELECTOR_NAMES,
        default="least-compared",
        help="Pair selection strategy (default: least-compared)"
    )
    _ = parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for pair selection and simulation"
    )
    _ = parser.add_argument(
        "--k-factor",
        type=int,
        default=K_FACTOR,
        help=f"Elo K-factor (default: {K_FACTOR})"
    )
    _ = parser.add_argument(
        "--max-required-votes",
        type=int,
        default=DEFAULT_REQUIRED_VOTES,
        help=f"Upper bound on the vote quota (default: {DEFAULT_REQUIRED_VOTES})"
    )
    _ = parser.add_argument(
        "--numbering",
        choices=[n.value for n in RankNumbering],
        default=RankNumbering.COMPETITION.value,
        help="Rank numbering after ties (default: competition)"
    )
    _ = parser.add_argument(
        "--include-all",
        action="store_true",
        help="Rank every rated submission, not only those that entered the ranking"
    )
    _ = parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    _ = parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set logging level (default: WARNING)"
    )
    _ = parser.add_argument(
        "--log-dir",
        default=".",
        help="Directory for log files (default: current directory)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add-submission", help="Store a user's submission")
    _ = add.add_argument("--user", required=True)
    _ = add.add_argument("--date", dest="challenge_date", help="Challenge-day (default: today, UTC)")
    _ = add.add_argument("--id", dest="submission_id", help="Submission id (default: random UUID)")
    _ = add.add_argument("--payload", help="JSON object stored with the submission")

    for name, help_text in [
        ("start", "Start voting and show progress"),
        ("next-pair", "Show the next pair to compare"),
        ("enroll", "Enter the ranking without voting (bootstrap case only)"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        _ = sub.add_argument("--user", required=True)
        _ = sub.add_argument("--date", dest="challenge_date", help="Challenge-day voted on (default: yesterday, UTC)")

    vote = subparsers.add_parser("vote", help="Vote for one submission of a pair")
    skip = subparsers.add_parser("skip", help="Skip a pair")
    for sub in (vote, skip):
        _ = sub.add_argument("--user", required=True)
        _ = sub.add_argument("--date", dest="challenge_date", help="Challenge-day voted on (default: yesterday, UTC)")
        _ = sub.add_argument("-a", dest="submission_a", required=True, help="First submission id")
        _ = sub.add_argument("-b", dest="submission_b", required=True, help="Second submission id")
    _ = vote.add_argument("--winner", required=True, help="Winning submission id")

    resolve = subparsers.add_parser("resolve", help="Resolve and print final ranks")
    _ = resolve.add_argument("--date", dest="challenge_date", help="Challenge-day to resolve (default: yesterday, UTC)")

    ranks = subparsers.add_parser("ranks", help="Show published final ranks of a day")
    _ = ranks.add_argument("--date", dest="challenge_date", help="Challenge-day to show (default: yesterday, UTC)")
    _ = ranks.add_argument("--limit", type=int, help="Show at most this many entries")

    rank_of = subparsers.add_parser("rank-of", help="Look up the final rank of a submission or user")
    target = rank_of.add_mutually_exclusive_group(required=True)
    _ = target.add_argument("--submission", dest="submission_id", help="Submission id")
    _ = target.add_argument("--user", help="User id (with --date)")
    _ = rank_of.add_argument("--date", dest="challenge_date", help="Challenge-day for --user (default: yesterday, UTC)")

    simulate = subparsers.add_parser("simulate", help="Run a seeded multi-day simulation")
    _ = simulate.add_argument("--ground-truth", required=True, help="JSON list of {user_id, quality, skip_rate?}")
    _ = simulate.add_argument("--days", type=int, default=3, help="Number of submission days (default: 3)")
    _ = simulate.add_argument("--noise", type=float, default=0.1, help="Voter noise (default: 0.1)")
    _ = simulate.add_argument("--in-memory", action="store_true", help="Use an in-memory store instead of --db")
    _ = simulate.add_argument("--start-date", dest="challenge_date", help="First simulated day (default: today, UTC)")

    return parser.parse_args(argv)


def args_to_typed(ns: Namespace) -> CLIArgs:
    """Convert argparse Namespace to typed CLIArgs."""
    return CLIArgs(
        command=ns.command,
        db=ns.db,
        user=getattr(ns, "user", None),
        challenge_date=getattr(ns, "challenge_date", None),
        submission_a=getattr(ns, "submission_a", None),
        submission_b=getattr(ns, "submission_b", None),
        winner=getattr(ns, "winner", None),
        submission_id=getattr(ns, "submission_id", None),
        payload=getattr(ns, "payload", None),
        limit=getattr(ns, "limit", None),
        ground_truth=getattr(ns, "ground_truth", None),
        days=getattr(ns, "days", 3),
        noise=getattr(ns, "noise", 0.1),
        in_memory=getattr(ns, "in_memory", False),
        selector=ns.selector,
        seed=ns.seed,
        k_factor=ns.k_factor,
        max_required_votes=ns.max_required_votes,
        numbering=ns.numbering,
        include_all=ns.include_all,
        debug=ns.debug,
        log_level=ns.log_level,
        log_dir=ns.log_dir,
    )


def resolve_date(args: CLIArgs, default: date) -> date:
    """Parse --date or fall back to the command's default day."""
    if args["challenge_date"] is None:
        return default
    try:
        return date.fromisoformat(args["challenge_date"])
    except ValueError as e:
        raise ValidationError(f"Invalid date {args['challenge_date']!r}, expected YYYY-MM-DD") from e


def wire_components(args: CLIArgs) -> RankingEngine:
    """Wire dependency injection components."""
    logger = get_logger("wire_components")

    if args["command"] == "simulate" and args["in_memory"]:
        logger.info("Creating in-memory store")
        store = MemoryStore()
    else:
        logger.info(f"Creating SQLite store at {args['db']}")
        store = SQLiteStore(Path(args["db"]))

    config = EngineConfig(
        k_factor=args["k_factor"],
        max_required_votes=args["max_required_votes"],
        rank_numbering=RankNumbering(args["numbering"]),
        eligible_only=not args["include_all"],
        selector=args["selector"],
        seed=args["seed"],
    )
    logger.info(f"Configuration: {config}")

    return RankingEngine(store, config=config)


def print_session(user_id: str, session: VotingSession) -> None:
    print(f"Voting on {session.challenge_date.isoformat()} as {user_id}")
    print(f"Submissions: {session.total_submissions} ({session.other_submissions} from others)")
    print(f"State: {session.state.value}")
    if session.needs_opt_in:
        print("Not enough submissions to vote on; run 'enroll' to enter the ranking.")
        return
    percentage = vote_progress_percentage(session.vote_count, session.required_votes)
    print(f"Progress: {session.vote_count}/{session.required_votes} votes ({percentage:.0f}%)")
    print(f"Entered ranking: {'yes' if session.entered_ranking else 'no'}")


def print_ranks(entries: list[RankedEntry]) -> None:
    table = PrettyTable()
    table.field_names = ["Rank", "Submission", "User", "Rating", "Votes"]
    table.align["Rank"] = "r"
    table.align["Rating"] = "r"
    table.align["Votes"] = "r"

    for entry in entries:
        table.add_row([entry.rank, entry.submission_id, entry.user_id, entry.rating, entry.vote_count])

    print(table)


def run_command(args: CLIArgs, engine: RankingEngine) -> None:
    """Dispatch one subcommand."""
    today = utc_today()
    voting_day = voting_challenge_date(today)
    command = args["command"]
    user_id = args["user"] or ""

    if command == "add-submission":
        payload = json.loads(args["payload"]) if args["payload"] else {}
        if not isinstance(payload, dict):
            raise ValidationError("--payload must be a JSON object")
        submission = engine.submit(
            user_id,
            resolve_date(args, today),
            payload=payload,
            submission_id=args["submission_id"],
        )
        print(f"Stored submission {submission.submission_id} for {submission.challenge_date.isoformat()}")
        if submission.included_in_ranking:
            print("Submission is already included in the ranking.")

    elif command == "start":
        print_session(user_id, engine.start_voting(user_id, resolve_date(args, voting_day)))

    elif command == "next-pair":
        pair = engine.next_pair(user_id, resolve_date(args, voting_day))
        print(f"A: {pair.submission_a.submission_id} (by {pair.submission_a.user_id})")
        print(f"B: {pair.submission_b.submission_id} (by {pair.submission_b.user_id})")

    elif command in ("vote", "skip"):
        result = engine.cast_vote(
            user_id,
            resolve_date(args, voting_day),
            args["submission_a"] or "",
            args["submission_b"] or "",
            args["winner"] if command == "vote" else None,
        )
        print(f"Progress: {result.vote_count}/{result.required_votes} votes")
        if result.entered_ranking:
            print("You have entered the ranking.")

    elif command == "enroll":
        _ = engine.enroll_without_voting(user_id, resolve_date(args, voting_day))
        print(f"{user_id} entered the ranking without voting.")

    elif command == "resolve":
        entries = engine.resolve_final_ranks(resolve_date(args, voting_day))
        print("\nFinal Ranks:")
        print_ranks(entries)

    elif command == "ranks":
        challenge_date = resolve_date(args, voting_day)
        entries = engine.ranking(challenge_date, limit=args["limit"])
        if entries:
            print(f"\nFinal Ranks for {challenge_date.isoformat()}:")
            print_ranks(entries)
        else:
            print(f"No published ranks for {challenge_date.isoformat()}")
        adjacent = engine.adjacent_ranking_dates(challenge_date)
        if adjacent.previous is not None:
            print(f"Previous ranked day: {adjacent.previous.isoformat()}")
        if adjacent.next is not None:
            print(f"Next ranked day: {adjacent.next.isoformat()}")

    elif command == "rank-of":
        if args["submission_id"]:
            found = engine.submission_rank(args["submission_id"])
            if found is None:
                print(f"{args['submission_id']} has no final rank")
            else:
                print(f"{args['submission_id']}: rank {found.rank} of {found.total} ({found.challenge_date.isoformat()})")
        else:
            challenge_date = resolve_date(args, voting_day)
            rank = engine.user_rank(challenge_date, user_id)
            if rank is None:
                print(f"{user_id} has no final rank for {challenge_date.isoformat()}")
            else:
                print(f"{user_id}: rank {rank} on {challenge_date.isoformat()}")

    elif command == "simulate":
        ground_truth = load_ground_truth(Path(args["ground_truth"] or ""))
        sim_config = SimulationConfig(
            days=args["days"],
            noise=args["noise"],
            seed=args["seed"],
            start_date=resolve_date(args, today),
        )
        simulation = Simulation(engine, ground_truth, sim_config)
        for report in simulation.run():
            correlation = "n/a" if report.correlation is None else f"{report.correlation:.3f}"
            print(
                f"\n{report.challenge_date.isoformat()}: {report.votes_cast} votes, {report.skips} skips, "
                f"{report.enrolled} opt-ins, rank/quality correlation {correlation}"
            )
            print_ranks(report.entries)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    raw_args = parse_args(argv)
    args = args_to_typed(raw_args)

    setup_logging(level=args["log_level"], debug=args["debug"], log_dir=Path(args["log_dir"]))
    logger = get_logger("main")
    logger.info(f"Running command {args['command']}")

    try:
        engine = wire_components(args)
        run_command(args, engine)
    except (InsufficientSubmissions, NoMorePairs) as e:
        print(str(e))
        sys.exit(2)
    except DuplicatePairError as e:
        logger.warning(str(e))
        print(f"Error: {e}")
        sys.exit(1)
    except (RankingError, ValidationError, ConfigurationError, json.JSONDecodeError) as e:
        logger.error(str(e))
        print(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        print("\nInterrupted by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
