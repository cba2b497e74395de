"""
HOMEBASE CLI Tests
"""

import json
from contextlib import asynccontextmanager
from unittest.mock import patch
from uuid import uuid4

import pytest

from homebase.cli import create_parser, run_anonymize, run_export, run_set_role


@pytest.fixture
def cli_db(db_session):
    """Point the CLI's session factory at the test database."""

    @asynccontextmanager
    async def session_factory():
        yield db_session

    with patch("homebase.cli.async_session", session_factory):
        yield db_session


class TestParser:
    """Test argument parsing."""

    def test_sweep_default_window(self):
        args = create_parser().parse_args(["sweep"])
        assert args.command == "sweep"
        assert args.window_minutes == 60

    def test_behavior_parses_uuid(self):
        member_id = uuid4()
        args = create_parser().parse_args(["behavior", str(member_id), "--window-hours", "6"])
        assert args.member_id == member_id
        assert args.window_hours == 6

    def test_invalid_uuid_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["export", "not-a-uuid"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_set_role(self):
        group_id, member_id = uuid4(), uuid4()
        args = create_parser().parse_args(["set-role", str(group_id), str(member_id), "security_admin"])
        assert (args.group_id, args.member_id, args.role) == (group_id, member_id, "security_admin")


class TestCommands:
    """Test command handlers against the test database."""

    @pytest.mark.asyncio
    async def test_anonymize_requires_confirmation(self, member, capsys):
        args = create_parser().parse_args(["anonymize", str(member.id)])

        assert await run_anonymize(args) == 2
        assert "--yes" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_anonymize(self, cli_db, member, capsys, caplog):
        args = create_parser().parse_args(["anonymize", str(member.id), "--yes"])

        assert await run_anonymize(args) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["removed"]["memberships"] == 1
        assert member.email.endswith("@deleted.local")
        assert "member_anonymized" in caplog.text

    @pytest.mark.asyncio
    async def test_export_to_file(self, cli_db, member, tmp_path):
        target = tmp_path / "export.json"
        args = create_parser().parse_args(["export", str(member.id), "-o", str(target)])

        assert await run_export(args) == 0
        data = json.loads(target.read_text())
        assert data["member"]["id"] == str(member.id)

    @pytest.mark.asyncio
    async def test_export_unknown_member(self, cli_db, capsys):
        args = create_parser().parse_args(["export", str(uuid4())])

        assert await run_export(args) == 1
        assert "Member not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_set_role_refuses_last_admin(self, cli_db, member, household_id, capsys):
        args = create_parser().parse_args(["set-role", str(household_id), str(member.id), "viewer"])

        assert await run_set_role(args) == 1
        assert "last admin" in capsys.readouterr().err
