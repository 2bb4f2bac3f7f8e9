"""AsyncClick CLI for background safety-engine tasks.

Provides operator commands:
- sweep-expired: Expire active TRAs whose validity window has passed
- reconcile: Drain an LMRA session's offline mutation queue
- discard-mutation: Drop a rejected mutation so reconciliation can resume
- verify-audit: Verify the audit log hash chain
"""

import asyncclick as click
import structlog

from safework.core.config import load_config
from safework.core.errors import Conflict, NotFoundError
from safework.core.persistence.audit import verify_audit_chain
from safework.core.persistence.database import (
    create_session_factory,
    init_database,
    session_scope,
    shutdown,
)
from safework.services import build_services

logger = structlog.get_logger()


async def init_db(database_url: str):
    """Initialize database engine. Returns engine for cleanup."""
    return await init_database(database_url)


@click.group()
@click.option("--database-url", default=None, help="SQLAlchemy async URL (default: SAFEWORK_DATABASE_URL)")
@click.pass_context
async def cli(ctx, database_url: str | None):
    """SafeWork - TRA/LMRA safety workflow engine"""
    ctx.ensure_object(dict)
    config = load_config()
    if database_url:
        config = config.model_copy(update={"database_url": database_url})
    ctx.obj["config"] = config


@cli.command("sweep-expired")
@click.pass_context
async def sweep_expired(ctx):
    """Expire every active TRA past its valid_until.

    Example:
        safework sweep-expired
    """
    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        services = build_services(create_session_factory(engine), config)
        expired = await services.tra.sweep_expired()

        click.echo(f"[+] Expired TRAs: {len(expired)}")
        for tra_id in expired:
            click.echo(f"    {tra_id}")

    except Exception as e:
        logger.error("sweep_expired_failed", error=str(e))
        click.echo(f"[-] Sweep failed: {e}")
        ctx.exit(1)
    finally:
        await shutdown(engine)


@cli.command()
@click.argument("session_id")
@click.pass_context
async def reconcile(ctx, session_id: str):
    """Apply queued offline mutations to an LMRA session.

    Prints the sync report as JSON. Exits 2 when reconciliation halted on
    a rejected mutation.

    Example:
        safework reconcile 0b7e...-session-id
    """
    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        services = build_services(create_session_factory(engine), config)
        try:
            report = await services.reconciler.reconcile(session_id)
        except NotFoundError:
            click.echo(f"[-] LMRA session not found: {session_id}")
            ctx.exit(1)
        except Conflict as e:
            click.echo(f"[-] Session changed during reconciliation, re-run to resume: {e}")
            ctx.exit(1)

        click.echo(report.model_dump_json(indent=2))
        if report.halted:
            click.echo(f"[!] Halted on rejected mutation {report.rejected[0].mutation_id}")
            ctx.exit(2)

    finally:
        await shutdown(engine)


@cli.command("discard-mutation")
@click.argument("mutation_id")
@click.pass_context
async def discard_mutation(ctx, mutation_id: str):
    """Discard a rejected offline mutation.

    Example:
        safework discard-mutation m-42
    """
    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        services = build_services(create_session_factory(engine), config)
        if await services.reconciler.discard(mutation_id):
            click.echo(f"[+] Discarded mutation {mutation_id}")
        else:
            click.echo(f"[-] Mutation {mutation_id} is unknown or already processed")
            ctx.exit(1)

    finally:
        await shutdown(engine)


@cli.command("verify-audit")
@click.pass_context
async def verify_audit(ctx):
    """Verify the audit log hash chain; exits 1 when tampering is detected.

    Example:
        safework verify-audit
    """
    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        async with session_scope(create_session_factory(engine)) as session:
            intact = await verify_audit_chain(session)

        if intact:
            click.echo("[+] Audit chain intact")
        else:
            logger.critical("audit_chain_tampered")
            click.echo("[-] Audit chain verification FAILED")
            ctx.exit(1)

    finally:
        await shutdown(engine)
