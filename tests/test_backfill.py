import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from postpulse.aggregation.backfill import reconcile, run_backfill, write_summaries
from postpulse.aggregation.live_updater import apply_event_change
from postpulse.aggregation.store import load_summary
from postpulse.cli.backfill import main, parse_args
from postpulse.core.errors import BackfillError
from postpulse.models.event_models import AnalyticsEvent
from postpulse.models.summary_models import MonthlySummary

SUMMARY_FIELDS = [
    "summary_id",
    "owner_id",
    "period_key",
    "total_likes",
    "total_comments",
    "total_shares",
    "total_reach",
    "total_saves",
    "total_follower_increase",
    "total_interaction",
    "total_external_link_taps",
    "total_profile_visits",
    "post_count",
    "daily_breakdown_json",
    "reference_record_id",
]


def _raw(record_id, owner_id, published_at, **metrics):
    raw = {"recordId": record_id, "ownerId": owner_id, "publishedAt": published_at}
    raw.update(metrics)
    return raw


def _seed(session, *events):
    for record_id, owner_id, published_at, metrics in events:
        session.add(
            AnalyticsEvent(
                record_id=record_id, owner_id=owner_id, published_at=published_at, **metrics
            )
        )
    session.commit()


def _snapshot(session):
    session.expire_all()
    rows = session.exec(select(MonthlySummary).order_by(MonthlySummary.summary_id)).all()
    return [{name: getattr(row, name) for name in SUMMARY_FIELDS} for row in rows]


def test_reconcile_counts_and_groups():
    raw_events = [
        _raw("a", "u1", "2024-03-05T10:00:00Z", likes=10),
        _raw("b", "u1", "2024-03-20T10:00:00Z", likes=5),
        _raw("c", "u1", "2024-04-01T00:00:00Z", likes=1),
        _raw("d", "u2", "2024-03-07T00:00:00Z", reach=80),
        _raw("e", "", "2024-03-07T00:00:00Z"),
        _raw("f", "u2", "garbage"),
    ]
    patches, result = reconcile(raw_events)

    assert (result.processed, result.skipped, result.filtered_out) == (6, 2, 0)
    assert result.target_groups == 3
    assert sorted(patches) == [("u1", "2024-03"), ("u1", "2024-04"), ("u2", "2024-03")]
    march = patches[("u1", "2024-03")]
    assert march.delta.likes == 15
    assert march.delta.post_count == 2
    assert march.reference_record_id == "b"


def test_reconcile_period_filter():
    raw_events = [
        _raw("a", "u1", "2024-03-05T10:00:00Z"),
        _raw("b", "u1", "2024-04-20T10:00:00Z"),
        _raw("c", "u2", "2024-04-01T00:00:00Z"),
    ]
    patches, result = reconcile(raw_events, period="2024-03")

    assert list(patches) == [("u1", "2024-03")]
    assert result.filtered_out == 2
    assert result.period == "2024-03"


def test_reconcile_reference_ignores_input_order():
    events = [
        _raw("a", "u1", "2024-03-20T10:00:00Z"),
        _raw("c", "u1", "2024-03-20T10:00:00Z"),
        _raw("b", "u1", "2024-03-02T10:00:00Z"),
    ]
    for order in (events, list(reversed(events))):
        patches, _ = reconcile(order)
        assert patches[("u1", "2024-03")].reference_record_id == "c"


def test_backfill_matches_live_replay(session):
    history = [
        ("create", "A", {"ownerId": "u1", "publishedAt": "2024-03-05T10:00:00Z", "likes": 10, "comments": 2}),
        ("create", "B", {"ownerId": "u1", "publishedAt": "2024-03-20T10:00:00Z", "likes": 5, "reach": 90}),
        ("create", "C", {"ownerId": "u2", "publishedAt": "2024-03-11T23:59:59Z", "saves": 4}),
        ("update", "A", {"ownerId": "u1", "publishedAt": "2024-04-01T02:00:00Z", "likes": 12, "comments": 2}),
        ("create", "D", {"ownerId": "u1", "publishedAt": "2024-03-20T10:00:00Z", "followerIncrease": -2}),
        ("delete", "B", None),
        ("update", "C", {"ownerId": "u2", "publishedAt": "2024-03-11T23:59:59Z", "saves": 9, "interactionCount": 30}),
    ]
    stored = {}
    for action, record_id, raw in history:
        before = stored.get(record_id)
        if action == "delete":
            session.delete(session.get(AnalyticsEvent, record_id))
            stored.pop(record_id)
        else:
            event = session.get(AnalyticsEvent, record_id) or AnalyticsEvent(record_id=record_id)
            event.owner_id = raw["ownerId"]
            event.published_at = raw["publishedAt"]
            event.likes = raw.get("likes")
            event.comments = raw.get("comments")
            event.reach = raw.get("reach")
            event.saves = raw.get("saves")
            event.follower_increase = raw.get("followerIncrease")
            event.interaction_count = raw.get("interactionCount")
            session.add(event)
            stored[record_id] = raw
        apply_event_change(session, record_id, before, stored.get(record_id))

    live = _snapshot(session)
    result = run_backfill(session)
    rebuilt = _snapshot(session)

    assert result.target_groups == 3
    assert result.writes_committed == 3
    assert rebuilt == live
    march = load_summary(session, "u1", "2024-03")
    assert march.reference_record_id == "D"
    assert march.total_follower_increase == -2


def test_backfill_repairs_drifted_summary(session):
    _seed(session, ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}))
    session.add(
        MonthlySummary(
            summary_id="u1_2024-03", owner_id="u1", period_key="2024-03", total_likes=999, post_count=7
        )
    )
    session.commit()

    run_backfill(session)
    row = load_summary(session, "u1", "2024-03")

    assert row.total_likes == 10
    assert row.post_count == 1
    assert row.reference_record_id == "a"


def test_backfill_preserves_created_at(session):
    _seed(session, ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}))
    run_backfill(session)
    row = load_summary(session, "u1", "2024-03")
    created_at = row.created_at

    run_backfill(session)
    session.refresh(row)

    assert row.created_at == created_at
    assert row.updated_at >= created_at


def test_backfill_is_idempotent(session):
    _seed(
        session,
        ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}),
        ("b", "u2", "2024-04-05T10:00:00Z", {"reach": 3}),
    )
    run_backfill(session)
    first = _snapshot(session)
    run_backfill(session)

    assert _snapshot(session) == first


def test_dry_run_writes_nothing(session):
    _seed(session, ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}))
    result = run_backfill(session, dry_run=True)

    assert result.dry_run is True
    assert result.target_groups == 1
    assert result.writes_committed == 0
    assert _snapshot(session) == []


def test_no_target_groups_is_a_no_op(session):
    _seed(session, ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}))
    result = run_backfill(session, period="2023-01")

    assert result.target_groups == 0
    assert result.filtered_out == 1
    assert _snapshot(session) == []


def test_writes_in_batches(session, monkeypatch):
    patches, _ = reconcile(
        _raw(f"e{i}", f"u{i}", "2024-03-05T10:00:00Z", likes=i) for i in range(5)
    )
    commits = []
    real_commit = session.commit

    def counting_commit():
        commits.append(1)
        real_commit()

    monkeypatch.setattr(session, "commit", counting_commit)

    assert write_summaries(session, patches, batch_size=2) == 5
    assert len(commits) == 3


def test_batch_size_is_capped(session, monkeypatch):
    patches, _ = reconcile(
        _raw(f"e{i}", "u1", f"{2000 + i // 12}-{i % 12 + 1:02d}-05T10:00:00Z") for i in range(401)
    )
    commits = []
    real_commit = session.commit

    def counting_commit():
        commits.append(1)
        real_commit()

    monkeypatch.setattr(session, "commit", counting_commit)

    assert write_summaries(session, patches, batch_size=5000) == 401
    assert len(commits) == 2


def test_failed_batch_reports_committed_count(session, monkeypatch):
    patches, _ = reconcile(
        _raw(f"e{i}", f"u{i}", "2024-03-05T10:00:00Z", likes=1) for i in range(3)
    )
    calls = {"n": 0}
    real_commit = session.commit

    def failing_second_commit():
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("COMMIT", None, Exception("quota exceeded"))
        real_commit()

    monkeypatch.setattr(session, "commit", failing_second_commit)

    with pytest.raises(BackfillError) as excinfo:
        write_summaries(session, patches, batch_size=1)
    assert excinfo.value.committed == 1
    assert excinfo.value.total == 3

    monkeypatch.undo()
    assert [row["summary_id"] for row in _snapshot(session)] == ["u0_2024-03"]


def test_cli_parses_period_aliases():
    assert parse_args(["--period", "2024-03"]).period == "2024-03"
    assert parse_args(["--month=2024-03"]).period == "2024-03"
    assert parse_args([]).period is None
    assert parse_args(["--dry-run"]).dry_run is True


@pytest.mark.parametrize("bad", ["2024-13", "March", "2024-3"])
def test_cli_rejects_malformed_period(bad):
    with pytest.raises(SystemExit) as excinfo:
        main([f"--period={bad}"])
    assert excinfo.value.code == 2


def test_cli_runs_backfill(session):
    _seed(
        session,
        ("a", "u1", "2024-03-05T10:00:00Z", {"likes": 10}),
        ("b", "u1", "2024-04-05T10:00:00Z", {"likes": 2}),
    )

    assert main(["--dry-run"]) == 0
    assert _snapshot(session) == []

    assert main(["--period", "2024-03"]) == 0
    assert [row["summary_id"] for row in _snapshot(session)] == ["u1_2024-03"]


def test_cli_exit_code_on_failure(monkeypatch):
    def broken_backfill(*args, **kwargs):
        raise BackfillError("boom", committed=2, total=5)

    monkeypatch.setattr("postpulse.cli.backfill.run_backfill", broken_backfill)
    assert main([]) == 1
