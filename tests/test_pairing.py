"""Тесты для core_logic/pairing.py - создание пары, приглашение и принятие."""

import pytest
from unittest.mock import AsyncMock, patch

from core_logic.errors import (
    AlreadyClaimedError,
    InvalidInviteLinkError,
    NotInitializedError,
    PermissionDeniedError,
)
from core_logic.identity import StaticIdentityProvider
from core_logic.pairing import PairingEngine
from core_logic.schemas import Realm, RecordKind
from core_logic.state import CheckinState
from db.converters import sqlalchemy_couple_to_pydantic
from db.repositories import CoupleRepository, InviteRepository
from db.sql_store import SqlRecordStore
from conftest import Device


class VisibilityOnlyStore(SqlRecordStore):
    """Claim открывает доступ к паре, но partner_identity еще не записан (задержка распространения)."""

    async def claim(self, token):
        identity = await self._identity()

        def action(session):
            invites = InviteRepository(session)
            invite = invites.get_by_token(token)
            invites.mark_claimed(invite.id, identity)
            return sqlalchemy_couple_to_pydantic(CoupleRepository(session).get_by_id(invite.couple_id))

        return self._run("принятии приглашения", action)


async def invite(device):
    couple = await device.pairing.ensure_couple()
    return await device.pairing.create_invite_link(couple)


class TestEnsureCouple:
    """Тесты для ensure_couple()."""

    @pytest.mark.asyncio
    async def test_idempotent(self, alice):
        """Тест: повторный вызов возвращает ту же пару."""
        first = await alice.pairing.ensure_couple()
        second = await alice.pairing.ensure_couple()

        assert first.id == second.id
        assert alice.state.couple_id == first.id
        assert len(await alice.store.query(RecordKind.COUPLE, {}, Realm.OWNER)) == 1

    @pytest.mark.asyncio
    async def test_second_device_reuses_couple(self, session_factory, settings, alice):
        """Тест: второе устройство того же аккаунта получает существующую пару."""
        couple = await alice.pairing.ensure_couple()
        other_device = Device(session_factory, "alice", settings)

        assert (await other_device.pairing.ensure_couple()).id == couple.id

    @pytest.mark.asyncio
    async def test_concurrent_create_returns_existing(self, session_factory, settings, alice):
        """Тест: если пару уже создало другое устройство, создание не падает."""
        couple = await alice.pairing.ensure_couple()
        other_device = Device(session_factory, "alice", settings)

        with patch.object(other_device.pairing, "find_couple", AsyncMock(return_value=None)):
            result = await other_device.pairing.ensure_couple()

        assert result.id == couple.id

    @pytest.mark.asyncio
    async def test_no_identity(self, session_factory, settings):
        """Тест: без личности пара не создается."""
        identity = StaticIdentityProvider(None)
        engine = PairingEngine(SqlRecordStore(session_factory, identity), identity, CheckinState(), settings)

        with pytest.raises(NotInitializedError):
            await engine.ensure_couple()


class TestCreateInviteLink:
    """Тесты для create_invite_link()."""

    @pytest.mark.asyncio
    async def test_link_contains_token(self, alice, settings):
        """Тест: ссылка строится из базового URL и токена."""
        link = await invite(alice)

        assert link.url == f"{settings.share_base_url}/{link.token}"
        assert link.share_id is not None
        assert alice.state.share_url == link.url

    @pytest.mark.asyncio
    async def test_reuses_open_invite(self, alice):
        """Тест: повторный вызов возвращает уже выпущенное приглашение."""
        first = await invite(alice)
        second = await invite(alice)

        assert first.token == second.token
        invites = await alice.store.query(RecordKind.INVITE, {}, Realm.OWNER)
        assert len(invites) == 1

    @pytest.mark.asyncio
    async def test_partner_cannot_invite(self, alice, bob):
        """Тест: приглашать может только создатель пары."""
        link = await invite(alice)
        couple = await bob.store.claim(link.token)

        with pytest.raises(PermissionDeniedError):
            await bob.pairing.create_invite_link(couple)

    @pytest.mark.asyncio
    async def test_paired_couple(self, alice, bob):
        """Тест: для собранной пары новое приглашение не выпускается."""
        link = await invite(alice)
        await bob.pairing.accept_invite_link(link.url)
        couple = await alice.pairing.find_couple()

        with pytest.raises(AlreadyClaimedError):
            await alice.pairing.create_invite_link(couple)


class TestAcceptInviteLink:
    """Тесты для accept_invite_link()."""

    @pytest.mark.asyncio
    async def test_both_sides_paired(self, alice, bob):
        """Тест: после принятия обе стороны видят пару."""
        link = await invite(alice)

        status = await bob.pairing.accept_invite_link(link.url)

        assert status.is_paired
        assert status.partner_identity == "alice"
        assert bob.state.couple_id == link.couple_id

        owner_status = await alice.pairing.check_pairing_status()
        assert owner_status.is_paired
        assert owner_status.partner_identity == "bob"
        assert alice.state.is_paired

    @pytest.mark.asyncio
    async def test_deep_link_and_code(self, alice, bob, settings):
        """Тест: принимается deep link rc://accept?share=<ссылка>."""
        link = await invite(alice)

        status = await bob.pairing.accept_invite_link(f"{settings.deep_link_scheme}://accept?share={link.url}")

        assert status.is_paired

    @pytest.mark.asyncio
    async def test_single_partner(self, alice, bob, carol):
        """Тест: третий пользователь не может принять использованное приглашение."""
        link = await invite(alice)
        await bob.pairing.accept_invite_link(link.url)

        with pytest.raises(AlreadyClaimedError):
            await carol.pairing.accept_invite_link(link.url)

        status = await alice.pairing.check_pairing_status()
        assert status.partner_identity == "bob"
        assert not (await carol.pairing.check_pairing_status()).is_paired

    @pytest.mark.asyncio
    async def test_paired_identity_cannot_join_second_couple(self, alice, bob, carol):
        """Тест: участник собранной пары не может принять чужое приглашение."""
        await bob.pairing.accept_invite_link((await invite(alice)).url)
        carol_link = await invite(carol)

        with pytest.raises(AlreadyClaimedError):
            await bob.pairing.accept_invite_link(carol_link.url)

        assert (await alice.pairing.check_pairing_status()).partner_identity == "bob"
        assert not (await carol.pairing.check_pairing_status()).is_paired
        assert (await bob.pairing.check_pairing_status()).partner_identity == "alice"

    @pytest.mark.asyncio
    async def test_invite_of_paired_owner_rejected(self, alice, bob, carol):
        """Тест: старое приглашение того, кто уже в другой паре, не собирает вторую пару."""
        bob_link = await invite(bob)
        await bob.pairing.accept_invite_link((await invite(alice)).url)

        with pytest.raises(AlreadyClaimedError):
            await carol.pairing.accept_invite_link(bob_link.url)

        assert not (await carol.pairing.check_pairing_status()).is_paired
        assert (await bob.pairing.check_pairing_status()).partner_identity == "alice"

    @pytest.mark.asyncio
    async def test_own_invite(self, alice):
        """Тест: собственное приглашение принять нельзя."""
        link = await invite(alice)

        with pytest.raises(PermissionDeniedError):
            await alice.pairing.accept_invite_link(link.url)

    @pytest.mark.asyncio
    async def test_invalid_link(self, bob):
        """Тест: нераспознанная ссылка -> InvalidInviteLinkError до обращения к хранилищу."""
        with pytest.raises(InvalidInviteLinkError):
            await bob.pairing.accept_invite_link("ftp://example.com/whatever")

    @pytest.mark.asyncio
    async def test_links_partner_when_claim_lags(self, session_factory, settings, alice):
        """Тест: если claim дал только доступ, партнер записывается явно."""
        link = await invite(alice)
        identity = StaticIdentityProvider("bob")
        state = CheckinState()
        engine = PairingEngine(VisibilityOnlyStore(session_factory, identity), identity, state, settings)

        status = await engine.accept_invite_link(link.url)

        assert status.is_paired
        assert (await alice.pairing.check_pairing_status()).partner_identity == "bob"


class TestRefreshAndComplete:
    """Тесты для refresh_pairing() и complete_pairing()."""

    @pytest.mark.asyncio
    async def test_refresh_repairs_partial_accept(self, session_factory, settings, alice):
        """Тест: refresh_pairing завершает принятие, прерванное после claim."""
        link = await invite(alice)
        identity = StaticIdentityProvider("bob")
        state = CheckinState()
        store = VisibilityOnlyStore(session_factory, identity)
        engine = PairingEngine(store, identity, state, settings)
        await store.claim(link.token)

        assert not (await engine.check_pairing_status()).is_paired
        status = await engine.refresh_pairing()

        assert status.is_paired
        assert state.partner_identity == "alice"

    @pytest.mark.asyncio
    async def test_check_status_does_not_write(self, session_factory, settings, alice):
        """Тест: check_pairing_status ничего не меняет в хранилище."""
        link = await invite(alice)
        identity = StaticIdentityProvider("bob")
        store = VisibilityOnlyStore(session_factory, identity)
        engine = PairingEngine(store, identity, CheckinState(), settings)
        await store.claim(link.token)

        await engine.check_pairing_status()

        couple = await alice.store.fetch(RecordKind.COUPLE, link.couple_id, Realm.OWNER)
        assert couple.partner_identity is None

    @pytest.mark.asyncio
    async def test_complete_revokes_open_invites(self, alice, bob, carol):
        """Тест: после сборки пары открытые приглашения отзываются."""
        link = await invite(alice)
        await alice.store.create(RecordKind.INVITE, {"couple_id": link.couple_id, "token": "spare-token-1"})
        await bob.pairing.accept_invite_link(link.url)

        assert await alice.pairing.complete_pairing()

        assert alice.state.share_url is None
        invites = await alice.store.query(RecordKind.INVITE, {"token": "spare-token-1"}, Realm.OWNER)
        assert invites[0].revoked
        with pytest.raises(AlreadyClaimedError):
            await carol.store.claim("spare-token-1")

    @pytest.mark.asyncio
    async def test_complete_not_paired(self, alice):
        """Тест: пока пара не собрана, complete_pairing ничего не делает."""
        await invite(alice)

        assert not await alice.pairing.complete_pairing()
        assert alice.state.share_url is not None
