"""Tests for SnapTrust CLI — proves CLI dispatches correctly."""

import json
import pytest
from datetime import datetime, timezone

from snaptrust.cli import build_parser, main
from snaptrust.models import AssignmentType, Cadence, NoticeOutcome, PartyType, UnitType
from snaptrust.persistence import EventLog, StateStore
from snaptrust.persistence.event_log import EVENTS_FILENAME
from snaptrust.policy import PolicyResolver
from snaptrust.service import SnapTrustService


def _seed(data_dir) -> None:
    """Persist one bad exit for seeker s1."""
    now = datetime(2026, 3, 4, 12, 0, 0, tzinfo=timezone.utc)
    service = SnapTrustService(
        PolicyResolver.default(),
        event_log=EventLog(data_dir / EVENTS_FILENAME),
        state_store=StateStore.in_dir(data_dir),
    )
    service.request_link("s1", "r1", PartyType.SEEKER, now=now)
    for side in PartyType:
        service.set_video_confirmed("s1", "r1", side, True, now=now)
        service.set_approved("s1", "r1", side, True, now=now)
    service.set_working_together("s1", "r1", PartyType.RETAINER, True, now=now)
    service.create_assignment(
        "route-1", "r1", "s1", AssignmentType.DEDICATED, UnitType.DAY, Cadence.WEEKLY,
        expected_units_per_period=5, now=now,
    )
    notice = service.file_notice("s1", "route-1", now=now)
    service.resolve_notice(notice.data["notice_id"], NoticeOutcome.BAD, now=now)


class TestCLIParsing:
    def test_status_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["status"])
        assert args.command == "status"

    def test_score_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["score", "--party-type", "seeker", "--id", "s1"])
        assert args.command == "score"
        assert args.party_type == "seeker"
        assert args.id == "s1"

    def test_badge_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([
            "badge", "--party-type", "retainer", "--id", "r1", "--badge", "punctual",
        ])
        assert args.badge == "punctual"

    def test_unknown_party_type_rejected(self) -> None:
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["score", "--party-type", "admin", "--id", "x"])


class TestCLIExecution:
    def test_status_runs(self, tmp_path) -> None:
        assert main(["--data", str(tmp_path), "status"]) == 0

    def test_check_invariants_runs(self, tmp_path) -> None:
        assert main(["--data", str(tmp_path), "check-invariants"]) == 0

    def test_no_command_shows_help(self, tmp_path, capsys) -> None:
        assert main(["--data", str(tmp_path)]) == 0

    def test_exit_status_reports_penalty(self, tmp_path, capsys) -> None:
        _seed(tmp_path)
        capsys.readouterr()
        assert main(["--data", str(tmp_path), "exit-status", "--seeker", "s1"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["next_tier"] == 2
        assert out["active_notices"] == 0

    def test_score_reads_persisted_state(self, tmp_path, capsys) -> None:
        _seed(tmp_path)
        capsys.readouterr()
        assert main(["--data", str(tmp_path), "score", "--party-type", "seeker", "--id", "s1"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["no_weight"] == 3.0

    def test_corrupt_state_fails_invariants(self, tmp_path) -> None:
        (tmp_path / "state.json").write_text('{"version": 99}', encoding="utf-8")
        assert main(["--data", str(tmp_path), "check-invariants"]) == 1

    def test_missing_config_dir_uses_default_policy(self, tmp_path, capsys) -> None:
        missing = tmp_path / "no-config"
        data = tmp_path / "no-data"
        assert main(["--config", str(missing), "--data", str(data), "status"]) == 0
        assert json.loads(capsys.readouterr().out)["events"] == 0
        assert main(["--config", str(missing), "--data", str(data), "check-invariants"]) == 0
        assert not data.exists()
