from __future__ import annotations

"""CLI for chunkcoach: analyze a song, plan sessions, rate chunks, track progress."""

import argparse
import functools
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..analysis import Analysis, analyze_song
from ..analysis.models import Song, bar_span_label
from ..analysis.tempo import bar_tick_range, build_tempo_map
from ..audio.playback import GuardedPlayback, SimulatedEngine
from ..config.config import load_config, validate_config
from ..scheduling.mastery import MASTERY_LEVELS, RATING_NAMES
from ..scheduling.session import Session, SessionOptions, build_session, describe_range, flatten_session
from ..util.randomness import make_rng, seed_if_needed
from .session_runner import RunnerOptions, RunnerStatus, SessionRunner
from .timers import ManualScheduler

from storage import (
    StateFileError,
    append_rating_history,
    export_ndjson,
    hash_file,
    load_history,
    load_state,
    query_chunk,
    rate_chunks,
    rating_rows,
    record_session,
    reset_state,
    save_state,
    state_path,
    validate_rows,
)
from analytics import (
    AnalyticsConfig,
    ewma_by_session,
    load_and_prepare,
    plot_heatmap,
    plot_levels,
    plot_trend,
    progress_counts,
    progress_table,
)

SIM_STEP_TICKS = 240
SIM_MAX_STEPS = 200_000

DIFFICULTY_BUCKETS = [
    ("90-100", 90, 100, "(hardest)"),
    ("70-89", 70, 89, ""),
    ("50-69", 50, 69, ""),
    ("30-49", 30, 49, ""),
    ("0-29", 0, 29, "(easiest)"),
]


class _Context:
    """Everything a sub-command needs once the song is loaded and analyzed."""

    def __init__(self, cfg: Dict[str, Any], song_path: Path, song: Song, analysis: Analysis) -> None:
        self.cfg = cfg
        self.song_path = song_path
        self.song = song
        self.analysis = analysis

    @property
    def output_dir(self) -> Path:
        return Path(self.cfg["storage"]["output_dir"])

    @property
    def state_file(self) -> Path:
        return state_path(self.song_path, self.output_dir)

    def load_state(self):
        return load_state(
            self.state_file,
            song_file=str(self.song_path),
            song_hash=hash_file(self.song_path),
            chunks=self.analysis.chunks,
            base_tempo=self.song.tempo,
        )


def _prepare(args: argparse.Namespace) -> Tuple[Optional[_Context], int]:
    seed_if_needed()
    if args.explain:
        from .explain import enable as explain_enable
        explain_enable(True)
    cfg = validate_config(load_config(args.config))
    if args.track is not None:
        cfg["analysis"]["track"] = int(args.track)
    if args.output is not None:
        cfg["storage"]["output_dir"] = str(args.output)

    song_path = Path(args.song)
    try:
        song = Song.load(song_path)
    except FileNotFoundError:
        print(f"ERROR: Song file not found: {song_path}", file=sys.stderr)
        return None, 1
    except json.JSONDecodeError as e:
        print(f"ERROR: Song file is not valid JSON: {e}", file=sys.stderr)
        return None, 1
    try:
        analysis = analyze_song(song, cfg)
    except IndexError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return None, 1
    return _Context(cfg, song_path, song, analysis), 0


def _print_header(ctx: _Context) -> None:
    song = ctx.song
    track = song.track(ctx.cfg["analysis"]["track"])
    duration_s = build_tempo_map(song).song_duration_ms / 1000 if song.master_bars else 0.0
    print(f"  Title: {song.title or '(untitled)'}")
    print(f"  Track: {track.name}")
    print(f"  Bars: {song.bar_count} | Tempo: {song.tempo:g} BPM | Duration: {duration_s:.1f}s")


def _cmd_analyze(ctx: _Context, args: argparse.Namespace) -> int:
    if args.json:
        print(json.dumps({
            "title": ctx.song.title,
            "tempo": ctx.song.tempo,
            "medians": ctx.analysis.medians,
            "sections": ctx.analysis.sections,
            "bars": [f.to_json() for f in ctx.analysis.features],
            "chunks": [c.to_json() for c in ctx.analysis.chunks],
        }, indent=2))
        return 0
    _print_header(ctx)
    features = ctx.analysis.features
    chunks = ctx.analysis.chunks
    print("\nBAR ANALYSIS")
    print("  Bar  Diff  Notes  Strings  Span  Shift  Tech   Rhythm  Techniques")
    for f in features:
        if f.is_empty:
            continue
        print(
            f"  {f.bar_number:>3}  {f.difficulty:>4}  {f.note_density:>5.1f}  {f.string_crossings:>7}"
            f"  {f.fret_span:>4}  {f.position_shifts:>5.0f}  {f.technique_score:>5.1f}"
            f"  {f.rhythm_score:>6.1f}  {', '.join(f.techniques) or '--'}"
        )

    played = [f for f in features if not f.is_empty]
    print("\nDIFFICULTY DISTRIBUTION")
    for label, lo, hi, tag in DIFFICULTY_BUCKETS:
        count = sum(1 for f in played if lo <= f.difficulty <= hi)
        print(f"  [{label:<6}]  {'#' * min(count * 2, 40):<30} {count:>3} bars  {tag}")

    print("\nCHUNKS")
    print("  ID          Bars        Diff  Techniques")
    for c in chunks:
        print(f"  {c.id:<10}  {bar_span_label(*c.bar_range):<10}  {c.difficulty:>4}  {', '.join(c.techniques) or '--'}")

    print("\nPRACTICE ORDER (hardest first)")
    for i, c in enumerate(sorted(chunks, key=lambda c: -c.difficulty), start=1):
        tech = f" [{', '.join(c.techniques)}]" if c.techniques else ""
        print(f"  {i}. {c.id} ({c.difficulty}) {bar_span_label(*c.bar_range)} -- {c.label}{tech}")
    return 0


def _print_session(session: Session) -> None:
    print(f"\nPRACTICE SESSION #{session.session_number}")
    print("=" * 50)
    print(f"Date: {session.date:%b %d, %Y}")
    print(f"Target: {session.total_minutes} min | Base tempo: {session.base_tempo:g} BPM\n")

    print(f"PHASE 1: ISOLATION (~{session.phase_time['isolation']} min)")
    for i, item in enumerate(session.isolation, start=1):
        c = item.chunk
        review = " [REVIEW]" if item.is_review else ""
        print(f"  {i}. {c.id}  {bar_span_label(*c.bar_range)} ({c.label})")
        print(f"     {item.level_name} -- {item.bpm} BPM ({item.tempo_pct:.0%}) -- {item.reps} reps{review}")
    n = len(session.isolation)

    if session.context:
        print(f"\nPHASE 2: CONTEXT (~{session.phase_time['context']} min)")
        for i, pair in enumerate(session.context, start=n + 1):
            print(f"  {i}. {' + '.join(c.id for c in pair.chunks)}  {bar_span_label(*pair.bar_range)}")
            print(f"     {pair.bpm} BPM ({pair.tempo_pct:.0%}) -- play through, focus on transitions")
        n += len(session.context)

    block = session.interleaving
    if block.chunks:
        print(f"\nPHASE 3: INTERLEAVING (~{session.phase_time['interleaving']} min)")
        print(f"  {n + 1}. Random order: {', '.join(c.id for c in block.chunks)}")
        print(f"     {block.bpm} BPM ({block.tempo_pct:.0%}) -- {block.reps} reps each")

    print(f"\nPHASE 4: RUN-THROUGH (~{session.phase_time['runthrough']} min)")
    print(f"  Full piece at {session.runthrough.bpm} BPM ({session.runthrough.tempo_pct:.0%}).")


def _build(ctx: _Context, state, minutes: Optional[int], seed: Optional[int]) -> Session:
    return build_session(
        ctx.analysis.chunks,
        state.mastery_map(),
        ctx.song.tempo,
        int(minutes or ctx.cfg["session"]["minutes"]),
        session_count=state.session_count,
        rng=make_rng(seed),
        options=SessionOptions.from_config(ctx.cfg),
    )


def _cmd_session(ctx: _Context, args: argparse.Namespace) -> int:
    state = ctx.load_state()
    session = _build(ctx, state, args.minutes, args.seed)
    if args.json:
        print(json.dumps(session.to_json(), indent=2))
    else:
        _print_header(ctx)
        _print_session(session)
        print("\nAfter practice:")
        print(f"  chunkcoach rate {ctx.song_path} chunk-0:5 chunk-1:3 ...")
        print("  (1=Struggled, 3=Okay, 5=Clean)")
    if not args.no_save:
        save_state(record_session(state, session.date), ctx.state_file)
    return 0


def _cmd_progress(ctx: _Context, args: argparse.Namespace) -> int:
    state = ctx.load_state()
    _print_header(ctx)
    print("\nPROGRESS")
    print(f"Sessions completed: {state.session_count}")
    if state.last_session:
        print(f"Last session: {state.last_session:%Y-%m-%d}")
    table = progress_table(ctx.analysis.chunks, state)
    print("\n  Chunk       Bars        Diff  Mastery                  Tempo  Next Review")
    for row in table.itertuples(index=False):
        filled = int(row.level * 10 / 5 + 0.5)
        bar = "[" + "#" * filled + "-" * (10 - filled) + "]"
        print(f"  {row.chunk_id:<10}  {row.bars:<10}  {row.difficulty:>4}  {row.level_name + ' ' + bar:<23}"
              f"  {str(row.bpm) + ' BPM':>7}  {row.review}")
    counts = progress_counts(table)
    total = counts["total"]
    print(f"\n  Mastered: {counts['mastered']}/{total} | Solid: {counts['solid']}/{total}"
          f" | Learning: {counts['learning']}/{total} | New: {counts['new']}/{total}")
    if total:
        pct = counts["overall_pct"]
        print(f"  Overall: [{'#' * int(pct / 5 + 0.5):<20}] {pct}%")

    if args.levels:
        plot_levels(table, save_path=args.levels)
        print(f"Saved: {args.levels}")
    if args.chunk or args.export:
        history = load_history(ctx.output_dir, ctx.cfg["storage"]["history_file"])
        history = history[history["song_hash"].astype("string") == state.song_hash]
        if args.chunk:
            print(f"\nHISTORY {args.chunk}")
            for row in query_chunk(history, args.chunk).itertuples(index=False):
                print(f"  {row.rated_at:%Y-%m-%d %H:%M}  {RATING_NAMES.get(int(row.rating), row.rating):<10}"
                      f"  {row.tempo} BPM  L{row.level_before} -> L{row.level_after}")
        if args.export:
            export_ndjson(history, Path(args.export))
            print(f"Saved: {args.export}")
    if args.plot or args.heatmap:
        acfg = AnalyticsConfig()
        df = load_and_prepare(ctx.output_dir, acfg, ctx.cfg["storage"]["history_file"])
        df = df[df["song_hash"].astype("string") == state.song_hash]
        if df.empty:
            print("WARNING: No rating history yet; nothing to plot.")
            return 0
        if args.plot:
            df = ewma_by_session(df, "tempo_ratio", acfg.smoothing_span, ["chunk_id"])
            plot_trend(df, chunk_id=args.chunk, save_path=args.plot)
            print(f"Saved: {args.plot}")
        if args.heatmap:
            plot_heatmap(df, save_path=args.heatmap)
            print(f"Saved: {args.heatmap}")
    return 0


def _parse_ratings(tokens: List[str]) -> Dict[str, int]:
    ratings: Dict[str, int] = {}
    for token in tokens:
        cid, sep, value = token.partition(":")
        if not sep or not cid:
            raise ValueError(f"Invalid rating '{token}'. Use chunk-id:rating (e.g., chunk-0:5)")
        try:
            ratings[cid] = int(value)
        except ValueError:
            raise ValueError(f"Invalid rating '{token}'. Rating must be an integer 1-5") from None
    return ratings


def _parse_reps(tokens: List[str]) -> Dict[str, int]:
    reps: Dict[str, int] = {}
    for token in tokens:
        cid, sep, value = token.partition(":")
        if not sep or not cid:
            raise ValueError(f"Invalid rep count '{token}'. Use chunk-id:reps (e.g., chunk-0:8)")
        try:
            reps[cid] = int(value)
        except ValueError:
            raise ValueError(f"Invalid rep count '{token}'. Reps must be an integer") from None
    return reps


def _apply_and_save(ctx: _Context, state, ratings: Dict[str, int]):
    state, changes = rate_chunks(state, ratings)
    save_state(state, ctx.state_file)
    if changes:
        append_rating_history(validate_rows(rating_rows(state, changes)), ctx.output_dir,
                              ctx.cfg["storage"]["history_file"])
    return state, changes


def _cmd_rate(ctx: _Context, args: argparse.Namespace) -> int:
    try:
        ratings = _parse_ratings(args.ratings)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    state = ctx.load_state()
    print("\nUpdated:")
    known = {}
    for cid, rating in ratings.items():
        if cid in state.chunks:
            known[cid] = rating
        else:
            print(f"  {cid}: not found")
    try:
        state, changes = _apply_and_save(ctx, state, known)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    for ch in changes:
        level = MASTERY_LEVELS[ch.level]
        arrow = " ^" if ch.level > ch.previous_level else (" v" if ch.level < ch.previous_level else "")
        print(f"  {ch.chunk_id}: {level.name} ({level.tempo_pct:.0%}) -- review in {level.interval_days}d{arrow}")
    return 0


def _cmd_reset(ctx: _Context) -> int:
    path = ctx.state_file
    if reset_state(path):
        print(f"Deleted: {path}")
    else:
        print("No practice state to reset.")
    return 0


def _cmd_simulate(ctx: _Context, args: argparse.Namespace) -> int:
    """Drive a full session against a simulated player, rating every prompt with --rating."""
    try:
        custom_reps = _parse_reps(args.reps)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    state = ctx.load_state()
    session = _build(ctx, state, args.minutes, args.seed)
    items = flatten_session(session, ctx.song.bar_count, custom_reps)
    if not items:
        print("Nothing to practice: the track has no playable bars.")
        return 0

    engine = SimulatedEngine()
    playback = GuardedPlayback(engine)
    scheduler = ManualScheduler()
    collected: Dict[str, int] = {}
    runner = SessionRunner(
        playback,
        scheduler,
        base_tempo=ctx.song.tempo,
        tick_range=functools.partial(bar_tick_range, ctx.song),
        options=RunnerOptions.from_config(ctx.cfg),
        clock=scheduler.now,
        on_rating=collected.__setitem__,
    )
    if args.tempo_ramp:
        runner.set_tempo_ramp(True)

    runner.start_session(items)
    last: Tuple[RunnerStatus, int] = (RunnerStatus.IDLE, -1)
    for _ in range(SIM_MAX_STEPS):
        view = runner.view()
        if (view.status, view.index) != last:
            last = (view.status, view.index)
            label = ""
            if view.item:
                reps = f" x{view.item.reps}" if view.item.reps > 0 else ""
                label = (f" {view.item.phase}: {view.item.label} [{describe_range(view.item)}]"
                         f" @ {view.now_playing_bpm} BPM{reps}")
            print(f"  [{view.status.value}] {view.index + 1}/{view.total}{label}")
        if view.status == RunnerStatus.SESSION_COMPLETE:
            break
        if view.status == RunnerStatus.PLAYING:
            if view.item is not None and view.item.reps > 0:
                engine.advance(SIM_STEP_TICKS)
            else:
                playback.stop()
        elif view.status == RunnerStatus.AWAITING_RATING:
            runner.rate(args.rating)
        else:
            scheduler.advance(scheduler.next_due_ms() or 0)
    else:
        print("ERROR: simulation did not finish", file=sys.stderr)
        runner.stop_session()
        return 1

    summary = runner.summary
    print("\nSESSION COMPLETE")
    print(f"  Items rated: {summary.items} | Avg rating: {summary.average_rating if summary.average_rating is not None else 'N/A'}")
    if summary.nailed:
        print(f"  Nailed it: {', '.join(summary.nailed)}")
    if summary.needs_work:
        print(f"  Needs work: {', '.join(summary.needs_work)}")
    runner.dismiss()

    if args.save:
        state, changes = _apply_and_save(ctx, record_session(state, session.date), collected)
        for ch in changes:
            print(f"  {ch.chunk_id}: {RATING_NAMES.get(ch.rating, ch.rating)} -> {MASTERY_LEVELS[ch.level].name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("song", help="Song JSON export")
    common.add_argument("--config", default=None)
    common.add_argument("--explain", action="store_true")
    common.add_argument("--track", type=int, default=None)
    common.add_argument("--output", "-o", default=None, help="Directory for practice state and history")

    p = argparse.ArgumentParser(prog="chunkcoach")
    sub = p.add_subparsers(dest="cmd", required=True)

    ap = sub.add_parser("analyze", parents=[common])
    ap.add_argument("--json", action="store_true", help="Print bars and chunks as JSON")

    sp = sub.add_parser("session", parents=[common])
    sp.add_argument("--minutes", type=int, default=None)
    sp.add_argument("--seed", type=int, default=None)
    sp.add_argument("--json", action="store_true", help="Print the session as JSON")
    sp.add_argument("--no-save", action="store_true", help="Do not count this session")

    pp = sub.add_parser("progress", parents=[common])
    pp.add_argument("--plot", default=None, help="Save a tempo-ratio trend plot to this path")
    pp.add_argument("--chunk", default=None, help="Show the rating history of one chunk and restrict the trend plot to it")
    pp.add_argument("--export", default=None, help="Write the rating history as NDJSON to this path")
    pp.add_argument("--heatmap", default=None, help="Save a rating heatmap to this path")
    pp.add_argument("--levels", default=None, help="Save the mastery distribution chart to this path")

    rp = sub.add_parser("rate", parents=[common])
    rp.add_argument("ratings", nargs="+", help="chunk-id:rating pairs, e.g. chunk-0:5 chunk-1:3")

    sub.add_parser("reset", parents=[common])

    sm = sub.add_parser("simulate", parents=[common])
    sm.add_argument("--minutes", type=int, default=None)
    sm.add_argument("--seed", type=int, default=None)
    sm.add_argument("--rating", type=int, choices=range(1, 6), default=5)
    sm.add_argument("--tempo-ramp", action="store_true")
    sm.add_argument("--reps", nargs="+", default=[], metavar="CHUNK:REPS",
                    help="Rep target per isolation chunk, e.g. chunk-0:8 (clamped to 1-20)")
    sm.add_argument("--save", action="store_true", help="Persist the simulated ratings")

    args = p.parse_args(argv)

    if args.cmd in ("session", "simulate") and args.minutes is not None and args.minutes <= 0:
        print("ERROR: --minutes must be positive", file=sys.stderr)
        return 2

    ctx, code = _prepare(args)
    if ctx is None:
        return code

    try:
        if args.cmd == "analyze":
            return _cmd_analyze(ctx, args)
        if args.cmd == "session":
            return _cmd_session(ctx, args)
        if args.cmd == "progress":
            return _cmd_progress(ctx, args)
        if args.cmd == "rate":
            return _cmd_rate(ctx, args)
        if args.cmd == "reset":
            return _cmd_reset(ctx)
        if args.cmd == "simulate":
            return _cmd_simulate(ctx, args)
    except StateFileError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
