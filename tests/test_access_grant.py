"""Tests for the access grant ledger."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sharegate.models import AccessGrant
from sharegate.models.base import utcnow
from sharegate.schemas.access_grant import GrantOptions, GrantRequest
from sharegate.services.access_grant import (
    AccessGrantService,
    GrantAction,
    GrantNotFoundError,
    ShareNotFoundError,
    resolve_share,
    resolve_table,
)

pytestmark = pytest.mark.asyncio


class TestResolve:
    async def test_resolve_by_name_and_id(self, db_session, share_factory):
        share = await share_factory(name="acme")

        assert (await resolve_share(db_session, "acme")).id == share.id
        assert (await resolve_share(db_session, str(share.id))).id == share.id
        assert (await resolve_share(db_session, share.id)).id == share.id
        assert await resolve_share(db_session, "missing") is None
        assert await resolve_share(db_session, uuid4()) is None

    async def test_resolve_table(self, db_session, share_factory):
        share = await share_factory(name="acme", schema="sales", tables=("orders", "refunds"))

        table = await resolve_table(db_session, share, "sales", "refunds")
        assert table is not None
        assert table.location == "s3://warehouse/acme/sales/refunds"
        assert await resolve_table(db_session, share, "sales", "missing") is None
        assert await resolve_table(db_session, share, "other", "orders") is None


class TestGrant:
    async def test_new_grant_defaults(self, db_session, share_factory, recipient_factory):
        share = await share_factory()
        recipient, _ = await recipient_factory()

        grant = await AccessGrantService(db_session).grant(recipient.id, share.name, granted_by="admin")

        assert grant.share_id == share.id
        assert grant.can_download is True
        assert grant.can_query is True
        assert grant.max_rows_per_query is None
        assert grant.expires_at is None
        assert grant.granted_by == "admin"

    async def test_grant_is_upsert(self, db_session, share_factory, recipient_factory):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        service = AccessGrantService(db_session)

        await service.grant(recipient.id, share.name)
        await service.grant(recipient.id, share.name, GrantOptions(max_rows_per_query=10))

        count = await db_session.execute(
            select(func.count()).select_from(AccessGrant).where(AccessGrant.recipient_id == recipient.id)
        )
        assert count.scalar_one() == 1
        assert (await service.get(recipient.id, share.id)).max_rows_per_query == 10

    async def test_grant_request_share_field_not_applied(
        self, db_session, share_factory, recipient_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()

        grant = await AccessGrantService(db_session).grant(
            recipient.id, share.name, GrantRequest(share=share.name, can_query=False)
        )
        assert grant.can_query is False
        assert grant.share_id == share.id

    async def test_grant_unknown_share(self, db_session, recipient_factory):
        recipient, _ = await recipient_factory()
        with pytest.raises(ShareNotFoundError):
            await AccessGrantService(db_session).grant(recipient.id, "missing")


class TestUpdate:
    async def test_partial_update_only_touches_given_fields(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        expires = utcnow() + timedelta(days=30)
        await grant_factory(recipient, share, max_rows_per_query=500, expires_at=expires)

        grant = await AccessGrantService(db_session).update(
            recipient.id, share.name, GrantOptions(can_query=False)
        )

        assert grant.can_query is False
        assert grant.can_download is True
        assert grant.max_rows_per_query == 500
        assert abs((grant.expires_at - expires).total_seconds()) < 1

    async def test_row_limit_update_keeps_flags(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        await grant_factory(recipient, share, can_download=False)

        grant = await AccessGrantService(db_session).update(
            recipient.id, share.name, GrantOptions(max_rows_per_query=5)
        )

        assert grant.max_rows_per_query == 5
        assert grant.can_download is False
        assert grant.can_query is True
        assert grant.expires_at is None

    async def test_explicit_none_clears_row_limit(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        await grant_factory(recipient, share, max_rows_per_query=500)

        grant = await AccessGrantService(db_session).update(
            recipient.id, share.name, GrantOptions(max_rows_per_query=None)
        )
        assert grant.max_rows_per_query is None

    async def test_update_missing_grant(self, db_session, share_factory, recipient_factory):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        with pytest.raises(GrantNotFoundError):
            await AccessGrantService(db_session).update(
                recipient.id, share.name, GrantOptions(can_query=False)
            )


class TestReplaceAll:
    async def test_replace_with_empty_removes_all(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        recipient, _ = await recipient_factory()
        for name in ("a", "b", "c"):
            await grant_factory(recipient, await share_factory(name=name))

        service = AccessGrantService(db_session)
        assert await service.replace_all(recipient.id, []) == []
        assert await service.list_for_recipient(recipient.id) == []

    async def test_replace_sets_exact_share_set(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        recipient, _ = await recipient_factory()
        a = await share_factory(name="a")
        b = await share_factory(name="b")
        c = await share_factory(name="c")
        await grant_factory(recipient, a, can_query=False)

        service = AccessGrantService(db_session)
        grants = await service.replace_all(recipient.id, ["b", str(c.id), "b", "missing"])

        assert {g.share_id for g in grants} == {b.id, c.id}
        listed = await service.list_for_recipient(recipient.id)
        assert [g.share_id for g in listed] == [b.id, c.id]
        assert all(g.can_query and g.can_download for g in listed)

    async def test_replace_leaves_other_recipients(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        alice, _ = await recipient_factory(name="alice")
        bob, _ = await recipient_factory(name="bob")
        await grant_factory(alice, share)
        await grant_factory(bob, share)

        await AccessGrantService(db_session).replace_all(alice.id, [])

        assert await AccessGrantService(db_session).get(bob.id, share.id) is not None


class TestIsAuthorized:
    async def test_row_limit_then_revoke(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory(name="acme", schema="sales")
        recipient, _ = await recipient_factory()
        await grant_factory(recipient, share, max_rows_per_query=100)
        service = AccessGrantService(db_session)

        result = await service.is_authorized(recipient.id, "acme", GrantAction.QUERY)
        assert result.allowed
        assert result.max_rows == 100

        assert await service.revoke(recipient.id, "acme") is True

        result = await service.is_authorized(recipient.id, "acme", GrantAction.READ)
        assert not result.allowed
        assert result.reason == "No access grant"

    async def test_unknown_share(self, db_session, recipient_factory):
        recipient, _ = await recipient_factory()
        result = await AccessGrantService(db_session).is_authorized(
            recipient.id, "missing", GrantAction.READ
        )
        assert not result.allowed
        assert result.reason == "Share not found"

    async def test_expired_grant_denies(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        await grant_factory(recipient, share, expires_at=utcnow() - timedelta(milliseconds=1))

        result = await AccessGrantService(db_session).is_authorized(
            recipient.id, share.name, GrantAction.READ
        )
        assert not result.allowed
        assert result.reason == "Access grant expired"

    async def test_capability_flags(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        await grant_factory(recipient, share, can_query=False, can_download=False)
        service = AccessGrantService(db_session)

        assert (await service.is_authorized(recipient.id, share.name, GrantAction.READ)).allowed
        query = await service.is_authorized(recipient.id, share.name, GrantAction.QUERY)
        assert query.reason == "Query not permitted"
        download = await service.is_authorized(recipient.id, share.name, GrantAction.DOWNLOAD)
        assert download.reason == "Download not permitted"

    async def test_revoke_missing_returns_false(self, db_session, share_factory, recipient_factory):
        share = await share_factory()
        recipient, _ = await recipient_factory()
        service = AccessGrantService(db_session)

        assert await service.revoke(recipient.id, share.name) is False
        assert await service.revoke(recipient.id, "missing") is False


class TestListForRecipient:
    async def test_expired_grants_hidden(
        self, db_session, share_factory, recipient_factory, grant_factory
    ):
        recipient, _ = await recipient_factory()
        live = await share_factory(name="live")
        await grant_factory(recipient, live)
        await grant_factory(
            recipient,
            await share_factory(name="stale"),
            expires_at=utcnow() - timedelta(seconds=1),
        )

        grants = await AccessGrantService(db_session).list_for_recipient(recipient.id)
        assert [g.share_id for g in grants] == [live.id]


class TestConcurrentReplace:
    """Share-set replacements on separate sessions serialize on the recipient row."""

    @pytest.mark.parametrize(
        ("first", "second"),
        [
            (["a", "b"], ["c"]),
            (["a", "b"], []),
        ],
    )
    async def test_final_share_set_is_never_mixed(
        self, db_engine, db_session, share_factory, recipient_factory, grant_factory, first, second
    ):
        recipient, _ = await recipient_factory()
        shares = {name: await share_factory(name=name) for name in ("a", "b", "c")}
        await grant_factory(recipient, shares["c"], can_query=False)
        await db_session.commit()

        session_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

        async def replace(refs: list[str]) -> None:
            async with session_maker() as session:
                await AccessGrantService(session).replace_all(recipient.id, refs)
                await session.commit()

        results = await asyncio.gather(replace(first), replace(second), return_exceptions=True)

        # SQLite has no row locks; a writer that loses the file lock fails outright
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(failures) < 2
        assert all(isinstance(f, OperationalError) for f in failures)

        async with session_maker() as session:
            grants = await AccessGrantService(session).list_for_recipient(recipient.id)
        final = {g.share_id for g in grants}
        assert final in ({shares[n].id for n in first}, {shares[n].id for n in second})
        assert all(g.can_query for g in grants)
