import argparse
import asyncio
import atexit
import json
import logging
from pathlib import Path

from .database import init_db, close_pool, get_quiz_stats, load_blocked_suggestions, unblock_suggestion
from .aggregator import Aggregator
from .engine import RankingEngine
from .experiments import (
    ExperimentConfig,
    create_experiment,
    get_experiment,
    get_test_results,
    get_variant_for_user,
    record_metric,
)
from .feedback import apply_pairwise, apply_quiz_answer, apply_thumbs, feature_evidence_summary
from .filters import generate_filtering_report
from .metadata import TmdbMetadataProvider, hydrate_details
from .models import AggregatedCandidate, HistoryEntry, ItemDetails, RankOptions, SourceSignal
from .profile import build_taste_profile
from .sources import default_adapters
from .subgenres import generate_subgenre_report
from .config import DEFAULT_RESULT_COUNT, DEFAULT_AGGREGATE_LIMIT

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _read_json(path: str):
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(file_path, encoding="utf-8") as f:
        return json.load(f)


def _parse_details(raw) -> dict[int, ItemDetails]:
    """Accept either a list of TMDB-shaped payloads or a mapping of id -> payload."""
    if not raw:
        return {}
    payloads = raw.values() if isinstance(raw, dict) else raw
    details = {}
    for payload in payloads:
        item = ItemDetails.from_dict(payload)
        details[item.item_id] = item
    return details


def _parse_candidates(raw) -> list:
    pool = []
    for entry in raw or []:
        if isinstance(entry, int):
            pool.append(entry)
            continue
        sources = [
            SourceSignal(
                source=s["source"],
                item_id=int(entry["item_id"]),
                confidence=float(s.get("confidence", 0.5)),
                reason=s.get("reason", ""),
            )
            for s in entry.get("sources") or []
        ]
        pool.append(AggregatedCandidate(
            item_id=int(entry["item_id"]),
            title=entry.get("title") or "",
            sources=sources,
            score=float(entry.get("score", 0.0)),
        ))
    return pool


def _parse_history(raw) -> list[HistoryEntry]:
    return [HistoryEntry.from_dict(e) for e in raw or []]


def _fetch_details(item_ids: list[int]) -> dict[int, ItemDetails]:
    async def fetch():
        async with TmdbMetadataProvider() as provider:
            return await hydrate_details(item_ids, provider, show_progress=True)

    return asyncio.run(fetch())


def _details_for(args: argparse.Namespace, item_ids: list[int]) -> dict[int, ItemDetails]:
    details = _parse_details(_read_json(args.details)) if args.details else {}
    missing = [i for i in item_ids if i not in details]
    if missing:
        details.update(_fetch_details(missing))
    return details


def _candidate_to_dict(candidate: AggregatedCandidate) -> dict:
    return {
        'item_id': candidate.item_id,
        'title': candidate.title or (candidate.details.title if candidate.details else ""),
        'score': round(candidate.score, 4),
        'consensus_level': candidate.consensus_level.value,
        'sources': candidate.source_names,
        'reasons': candidate.reasons,
        'warnings': candidate.warnings,
        'exploratory': candidate.exploratory,
    }


def _output_result(result, args: argparse.Namespace) -> None:
    if args.json:
        print(json.dumps({
            'status': result.status.value,
            'lambda': result.lambda_used,
            'variant': result.variant,
            'candidates': [_candidate_to_dict(c) for c in result.candidates],
            'excluded': {str(k): v for k, v in result.excluded.items()},
        }, indent=2))
        return

    if result.is_empty:
        logger.info("No candidates available.")
        if result.excluded:
            logger.info(generate_filtering_report(result.excluded))
        return

    logger.info(f"\nTop {len(result.candidates)} (lambda={result.lambda_used:.2f}"
                f"{f', variant {result.variant}' if result.variant else ''}):\n")
    for i, c in enumerate(result.candidates, 1):
        title = c.title or (c.details.title if c.details else str(c.item_id))
        marker = " [explore]" if c.exploratory else ""
        logger.info(f"{i:2}. {title} ({c.score:.2f}, {c.consensus_level.value}){marker}")
        for reason in c.reasons[:3]:
            logger.info(f"      - {reason}")
        for warning in c.warnings[:2]:
            logger.info(f"      ! {warning}")
    if result.excluded:
        logger.info("\n" + generate_filtering_report(result.excluded))


def _options_from_args(args: argparse.Namespace, exclude_ids=None) -> RankOptions:
    return RankOptions(
        mmr_lambda=args.mmr_lambda,
        discovery=args.discovery,
        result_count=args.count,
        exclude_ids=set(exclude_ids or []),
    )


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the database schema."""
    init_db()
    logger.info("Database initialized")


def cmd_rank(args: argparse.Namespace) -> None:
    """Rank a candidate pool from a JSON input file."""
    init_db()
    data = _read_json(args.input)
    user_id = args.user or data.get("user_id") or "local"

    engine = RankingEngine(use_store=not args.no_store)
    result = engine.rank(
        user_id,
        _parse_history(data.get("history")),
        _parse_candidates(data.get("candidates")),
        _options_from_args(args, data.get("exclude_ids")),
        details=_parse_details(data.get("details")),
        watchlist=_parse_history(data.get("watchlist")),
    )
    _output_result(result, args)


def cmd_recommend(args: argparse.Namespace) -> None:
    """Aggregate from live sources, hydrate from TMDB and rank."""
    init_db()
    data = _read_json(args.input)
    user_id = args.user or data.get("user_id") or "local"
    adapters = default_adapters()
    if not adapters:
        logger.error("No sources configured. Set TMDB_API_KEY and/or TRAKT_CLIENT_ID.")
        return

    async def run():
        async with TmdbMetadataProvider() as provider:
            engine = RankingEngine(aggregator=Aggregator(adapters), metadata_provider=provider)
            return await engine.recommend(
                user_id,
                _parse_history(data.get("history")),
                _options_from_args(args, data.get("exclude_ids")),
                details=_parse_details(data.get("details")),
                watchlist=_parse_history(data.get("watchlist")),
                limit=args.limit,
                show_progress=True,
            )

    _output_result(asyncio.run(run()), args)


def cmd_feedback(args: argparse.Namespace) -> None:
    """Record a thumbs up/down on an item."""
    init_db()
    details = _details_for(args, [args.item_id]).get(args.item_id)
    if details is None:
        logger.error(f"No metadata for item {args.item_id}")
        return
    written = apply_thumbs(args.user, details, positive=args.up, reason=args.reason)
    logger.info(f"Recorded thumbs {'up' if args.up else 'down'} on {details.title or args.item_id}: {written} features updated")


def cmd_unblock(args: argparse.Namespace) -> None:
    """Allow a blocked item to be suggested again."""
    init_db()
    if args.item_id not in load_blocked_suggestions(args.user):
        logger.warning(f"Item {args.item_id} is not blocked for {args.user}")
        return
    unblock_suggestion(args.user, args.item_id)
    logger.info(f"Item {args.item_id} can be suggested to {args.user} again")


def cmd_learn(args: argparse.Namespace) -> None:
    """Update exploration state (and optionally seed feedback) from a JSON history file."""
    init_db()
    data = _read_json(args.input)
    user_id = args.user or data.get("user_id") or "local"
    history = _parse_history(data.get("history"))
    details = _parse_details(data.get("details"))

    summary = RankingEngine().learn_from_history(user_id, history, details, seed_feedback=args.seed)
    if args.json:
        print(json.dumps(summary, indent=2))
        return
    if 'features_seeded' in summary:
        logger.info(f"Seeded {summary['features_seeded']} feature counters")
    logger.info(f"Exploration rate for {user_id}: {summary['exploration_rate']:.2f}")
    logger.info(f"Genre transitions updated: {summary['transitions']}")


def cmd_quiz(args: argparse.Namespace) -> None:
    """Record a quiz answer."""
    init_db()
    details = None
    if args.question_type == "movie_rating":
        details = _details_for(args, [args.feature_id]).get(args.feature_id)
    answer = int(args.answer) if args.question_type == "genre_rating" and args.answer.isdigit() else args.answer
    positive, negative = apply_quiz_answer(
        args.user, args.question_type, answer, feature_id=args.feature_id, name=args.name or "", details=details
    )
    stats = get_quiz_stats(args.user)
    logger.info(f"Recorded {args.question_type} answer (+{positive}/-{negative}); {stats['total_answered']} answers so far")


def cmd_pairwise(args: argparse.Namespace) -> None:
    """Record that WINNER beat LOSER."""
    init_db()
    details = _details_for(args, [args.winner, args.loser])
    winner, loser = details.get(args.winner), details.get(args.loser)
    if winner is None or loser is None:
        logger.error("Metadata is required for both items")
        return
    written = apply_pairwise(args.user, winner, loser, shared_reason_tags=args.tag or [])
    logger.info(f"Recorded {winner.title or args.winner} over {loser.title or args.loser}: {written} features updated")


def cmd_evidence(args: argparse.Namespace) -> None:
    """Show learned feature evidence for a user."""
    init_db()
    summary = feature_evidence_summary(args.user, top_n=args.top)
    if args.json:
        print(json.dumps(summary, indent=2))
        return
    if not summary:
        logger.info(f"No feedback recorded for {args.user}")
        return
    for feature_type, groups in summary.items():
        logger.info(f"\n{feature_type}:")
        for label, rows in (("prefers", groups['preferred']), ("avoids", groups['avoided'])):
            if rows:
                shown = ", ".join(f"{r['name']} (+{r['positive']}/-{r['negative']})" for r in rows)
                logger.info(f"  {label}: {shown}")


def cmd_ab_create(args: argparse.Namespace) -> None:
    """Create or replace an experiment from a JSON config."""
    init_db()
    config = ExperimentConfig.from_dict(_read_json(args.file))
    create_experiment(config)
    logger.info(f"Experiment {config.id} saved with variants {[v.name for v in config.variants]}")


def cmd_ab_assign(args: argparse.Namespace) -> None:
    """Show (creating if needed) a user's variant."""
    init_db()
    variant = get_variant_for_user(args.test_id, args.user, films_rated=args.films_rated)
    if variant is None:
        logger.info(f"{args.user} is not enrolled in {args.test_id}")
        return
    logger.info(f"{args.user} -> {variant.name} {json.dumps(variant.params)}")


def cmd_ab_metric(args: argparse.Namespace) -> None:
    """Append one metric observation."""
    init_db()
    if record_metric(args.test_id, args.user, args.metric, args.value):
        logger.info(f"Recorded {args.metric}={args.value} for {args.user}")
    else:
        logger.warning(f"{args.user} has no assignment in {args.test_id}; metric not recorded")


def cmd_ab_results(args: argparse.Namespace) -> None:
    """Summarize an experiment and compare variants with control."""
    init_db()
    if get_experiment(args.test_id) is None:
        logger.error(f"Unknown experiment: {args.test_id}")
        return
    results = get_test_results(args.test_id, method=args.method)

    if args.json:
        print(json.dumps({
            'test_id': results.test_id,
            'control': results.control,
            'variants': {
                name: {'users': v.users, 'metrics': {m: vars(s) for m, s in v.metrics.items()}}
                for name, v in results.variants.items()
            },
            'comparisons': [vars(c) for c in results.comparisons],
        }, indent=2))
        return

    logger.info(f"\nExperiment {results.test_id} (control: {results.control or 'n/a'})")
    for name, v in results.variants.items():
        logger.info(f"  {name}: {v.users} users")
        for metric, s in v.metrics.items():
            logger.info(f"    {metric}: mean {s.mean:.3f} (sd {s.std:.3f}, n={s.count})")
    if not results.comparisons:
        logger.info("\nNot enough data for comparisons yet.")
        return
    logger.info("")
    for c in results.comparisons:
        flag = "significant" if c.is_significant else "not significant"
        logger.info(
            f"  {c.variant} vs control on {c.metric}: {c.percent_change:+.1f}% "
            f"(p={c.p_value:.4f}, 95% CI [{c.ci_lower:+.3f}, {c.ci_upper:+.3f}], {flag})"
        )


def cmd_profile_report(args: argparse.Namespace) -> None:
    """Show the taste profile built from a JSON history file."""
    data = _read_json(args.input)
    history = _parse_history(data.get("history"))
    details = _parse_details(data.get("details"))
    profile = build_taste_profile(history, details, _parse_history(data.get("watchlist")))

    stats = profile.stats
    logger.info(f"\nFilms: {stats.total_watched} ({stats.total_rated} rated, {stats.total_liked} liked)")
    if stats.avg_rating is not None:
        logger.info(f"Average rating: {stats.avg_rating:.2f}")
    for label, weights in (
        ("genres", profile.genres),
        ("directors", profile.directors),
        ("actors", profile.actors),
        ("keywords", profile.keywords),
        ("decades", profile.decades),
    ):
        if weights:
            logger.info(f"\nTop {label}:")
            for name, weight in list(weights.items())[:args.top]:
                logger.info(f"  {name}: {weight:.2f}")
    if profile.avoided_genre_combos:
        logger.info(f"\nAvoided genre combinations: {', '.join(sorted(profile.avoided_genre_combos))}")
    report = generate_subgenre_report(profile.subgenre_patterns)
    if report:
        logger.info("\nSubgenres:\n" + report)
    if profile.missing_metadata:
        logger.warning(f"{profile.missing_metadata} films had no metadata and were skipped")


def _add_rank_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--user", help="User id (defaults to user_id in the input file)")
    p.add_argument("--discovery", type=float, help="0 = safe, 100 = adventurous")
    p.add_argument("--lambda", dest="mmr_lambda", type=float, help="MMR relevance weight (overrides --discovery)")
    p.add_argument("--count", type=int, default=DEFAULT_RESULT_COUNT, help="Number of results")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a report")


def main():
    parser = argparse.ArgumentParser(description="reelrank movie recommendation engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    rank_parser = subparsers.add_parser("rank", help="Rank a candidate pool from a JSON file")
    rank_parser.add_argument("--input", required=True, help="JSON with history, candidates and details")
    rank_parser.add_argument("--no-store", action="store_true", help="Ignore stored feedback and experiments")
    _add_rank_options(rank_parser)
    rank_parser.set_defaults(func=cmd_rank)

    rec_parser = subparsers.add_parser("recommend", help="Aggregate from live sources and rank")
    rec_parser.add_argument("--input", required=True, help="JSON with history (and optional details)")
    rec_parser.add_argument("--limit", type=int, default=DEFAULT_AGGREGATE_LIMIT, help="Candidates to aggregate")
    _add_rank_options(rec_parser)
    rec_parser.set_defaults(func=cmd_recommend)

    fb_parser = subparsers.add_parser("feedback", help="Thumbs up/down on an item")
    fb_parser.add_argument("user")
    fb_parser.add_argument("item_id", type=int)
    direction = fb_parser.add_mutually_exclusive_group(required=True)
    direction.add_argument("--up", dest="up", action="store_true")
    direction.add_argument("--down", dest="up", action="store_false")
    fb_parser.add_argument("--reason", help="love_all, hate_all, actor:<name>, director:<name>, genre:<name>, keyword:<name>, already_seen, not_in_mood")
    fb_parser.add_argument("--details", help="JSON file with item metadata (fetched from TMDB if omitted)")
    fb_parser.set_defaults(func=cmd_feedback)

    unblock_parser = subparsers.add_parser("unblock", help="Allow a blocked item to be suggested again")
    unblock_parser.add_argument("user")
    unblock_parser.add_argument("item_id", type=int)
    unblock_parser.set_defaults(func=cmd_unblock)

    quiz_parser = subparsers.add_parser("quiz", help="Record a quiz answer")
    quiz_parser.add_argument("user")
    quiz_parser.add_argument("question_type", choices=[
        "genre_rating", "theme_preference", "subgenre_preference", "era_preference",
        "actor_preference", "director_preference", "movie_rating",
    ])
    quiz_parser.add_argument("feature_id", type=int)
    quiz_parser.add_argument("answer")
    quiz_parser.add_argument("--name", help="Feature name (genre, keyword, person, subgenre key)")
    quiz_parser.add_argument("--details", help="JSON file with item metadata for movie_rating")
    quiz_parser.set_defaults(func=cmd_quiz)

    pw_parser = subparsers.add_parser("pairwise", help="Record that one item beat another")
    pw_parser.add_argument("user")
    pw_parser.add_argument("winner", type=int)
    pw_parser.add_argument("loser", type=int)
    pw_parser.add_argument("--tag", action="append", help="Shared reason tag (repeatable)")
    pw_parser.add_argument("--details", help="JSON file with metadata for both items")
    pw_parser.set_defaults(func=cmd_pairwise)

    learn_parser = subparsers.add_parser("learn", help="Learn exploration rate and genre transitions from a history")
    learn_parser.add_argument("--input", required=True, help="JSON with dated, rated history and details")
    learn_parser.add_argument("--user", help="User id (defaults to user_id in the input file)")
    learn_parser.add_argument("--seed", action="store_true", help="Also seed feature feedback from the history")
    learn_parser.add_argument("--json", action="store_true")
    learn_parser.set_defaults(func=cmd_learn)

    ev_parser = subparsers.add_parser("evidence", help="Show learned feature evidence")
    ev_parser.add_argument("user")
    ev_parser.add_argument("--top", type=int, default=5)
    ev_parser.add_argument("--json", action="store_true")
    ev_parser.set_defaults(func=cmd_evidence)

    abc_parser = subparsers.add_parser("ab-create", help="Create an experiment from JSON")
    abc_parser.add_argument("--file", required=True)
    abc_parser.set_defaults(func=cmd_ab_create)

    aba_parser = subparsers.add_parser("ab-assign", help="Show or create a user's variant")
    aba_parser.add_argument("test_id")
    aba_parser.add_argument("user")
    aba_parser.add_argument("--films-rated", type=int, help="For min_films_rated criteria")
    aba_parser.set_defaults(func=cmd_ab_assign)

    abm_parser = subparsers.add_parser("ab-metric", help="Append a metric observation")
    abm_parser.add_argument("test_id")
    abm_parser.add_argument("user")
    abm_parser.add_argument("metric")
    abm_parser.add_argument("value", type=float)
    abm_parser.set_defaults(func=cmd_ab_metric)

    abr_parser = subparsers.add_parser("ab-results", help="Compare variants with control")
    abr_parser.add_argument("test_id")
    abr_parser.add_argument("--method", choices=["approx", "scipy"], help="p-value backend")
    abr_parser.add_argument("--json", action="store_true")
    abr_parser.set_defaults(func=cmd_ab_results)

    pr_parser = subparsers.add_parser("profile-report", help="Show a taste profile from a JSON history")
    pr_parser.add_argument("--input", required=True)
    pr_parser.add_argument("--top", type=int, default=10)
    pr_parser.set_defaults(func=cmd_profile_report)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
