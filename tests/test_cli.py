"""Unit tests for operator CLI commands against a temporary database."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from asyncclick.testing import CliRunner
from sqlalchemy import update

from conftest import NOW, PERFORMER, build_active_tra, lmra_request, tra_request
from safework.cli.ops import cli
from safework.core.domain.requests import UpdateTRARequest
from safework.core.domain.sync import OfflineMutation
from safework.core.persistence.database import create_session_factory, init_database, session_scope
from safework.core.persistence.models import AuditLog
from safework.services import build_services


@pytest.fixture
async def db_engine(test_db_path, monkeypatch):
    """Fresh temporary database; the CLI disposes the engine after each command."""
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    engine = await init_database(f"sqlite+aiosqlite:///{test_db_path}")
    yield engine
    await engine.dispose()


@pytest.fixture
def seeded(db_engine, config, notifier):
    return build_services(create_session_factory(db_engine), config, notifier)


async def invoke(engine, *args):
    runner = CliRunner()
    with patch("safework.cli.ops.init_db", new=AsyncMock(return_value=engine)):
        return await runner.invoke(cli, list(args))


async def test_verify_audit_intact(db_engine, seeded):
    await seeded.tra.create(tra_request(), "org-1", "author-1")

    result = await invoke(db_engine, "verify-audit")

    assert result.exit_code == 0
    assert "[+] Audit chain intact" in result.output


async def test_verify_audit_detects_tampering(db_engine, seeded):
    created = await seeded.tra.create(tra_request(), "org-1", "author-1")
    await seeded.tra.update(
        created.entity.id, created.version, UpdateTRARequest(title="Conveyor roller swap"), "author-1"
    )

    async with session_scope(create_session_factory(db_engine)) as session:
        await session.execute(
            update(AuditLog).where(AuditLog.event_type == "tra_created").values(actor_id="intruder")
        )

    result = await invoke(db_engine, "verify-audit")

    assert result.exit_code == 1
    assert "[-] Audit chain verification FAILED" in result.output


async def test_sweep_expired_lists_expired_ids(db_engine, seeded, tra_machine):
    overdue = build_active_tra(tra_machine, now=NOW - timedelta(days=400))
    current = build_active_tra(tra_machine)
    await seeded.tra.store.create(overdue)
    await seeded.tra.store.create(current)

    result = await invoke(db_engine, "sweep-expired")

    assert result.exit_code == 0
    assert "[+] Expired TRAs: 1" in result.output
    assert overdue.id in result.output
    assert current.id not in result.output


async def test_reconcile_reports_halt(db_engine, seeded, tra_machine):
    tra = build_active_tra(tra_machine)
    await seeded.tra.store.create(tra)
    started = await seeded.lmra.start(lmra_request(tra.id), PERFORMER)
    sid = started.entity.id

    for sequence, payload in enumerate([
        {"kind": "set_fields", "fields": {"comments": "Barrier placed"}},
        {"kind": "stage_command", "command": "finalize", "args": {}},
    ]):
        await seeded.reconciler.enqueue(OfflineMutation.model_validate({
            "mutation_id": f"m-{sequence}",
            "session_id": sid,
            "sequence": sequence,
            "actor_id": PERFORMER,
            "occurred_at": NOW.isoformat(),
            "payload": payload,
        }))

    result = await invoke(db_engine, "reconcile", sid)

    assert result.exit_code == 2
    assert "[!] Halted on rejected mutation m-1" in result.output
    report = json.loads(result.output[:result.output.index("[!]")])
    assert report["applied"] == ["m-0"]
    assert report["halted"] is True

    discarded = await invoke(db_engine, "discard-mutation", "m-1")
    assert discarded.exit_code == 0
    assert "[+] Discarded mutation m-1" in discarded.output

    resumed = await invoke(db_engine, "reconcile", sid)
    assert resumed.exit_code == 0


async def test_reconcile_unknown_session(db_engine):
    result = await invoke(db_engine, "reconcile", "no-such-session")

    assert result.exit_code == 1
    assert "[-] LMRA session not found" in result.output


async def test_discard_unknown_mutation(db_engine):
    result = await invoke(db_engine, "discard-mutation", "m-missing")

    assert result.exit_code == 1
    assert "[-] Mutation m-missing is unknown or already processed" in result.output
