"""Жизненный цикл пары: создание, приглашение, принятие, связывание, отзыв приглашения."""

import logging
import secrets
from typing import List, Optional

from .config import CheckinSettings, get_settings
from .errors import (
    AlreadyClaimedError,
    CheckinError,
    ConflictError,
    NotFoundError,
    NotInitializedError,
    PermissionDeniedError,
)
from .identity import IdentityProvider
from .invite_links import build_share_url, parse_invite_token
from .record_store import RecordStore
from .schemas import Couple, InviteLink, InviteShare, PairingState, Realm, RecordKind
from .state import CheckinState

logger = logging.getLogger(__name__)

# Порядок проверки зон: после создания пары запись может стать видна через shared
LOOKUP_REALMS = (Realm.SHARED, Realm.OWNER)


def new_invite_token() -> str:
    return secrets.token_urlsafe(16)


class PairingEngine:
    """Движок пары поверх RecordStore."""

    def __init__(
        self,
        store: RecordStore,
        identity_provider: IdentityProvider,
        state: CheckinState,
        settings: Optional[CheckinSettings] = None,
    ):
        self.store = store
        self.identity_provider = identity_provider
        self.state = state
        self.settings = settings or get_settings()

    async def _require_identity(self) -> str:
        identity = await self.identity_provider.current_identity()
        if not identity:
            raise NotInitializedError("Личность пользователя еще не известна")
        if self.state.identity != identity:
            self.state.update(identity=identity)
        return identity

    # ==================== Поиск пары ====================

    async def _fetch_couple_any_realm(self, couple_id: str) -> Optional[Couple]:
        """Ищет пару по id сначала в shared, затем в owner зоне."""
        for realm in LOOKUP_REALMS:
            try:
                return await self.store.fetch(RecordKind.COUPLE, couple_id, realm)
            except (NotFoundError, PermissionDeniedError):
                logger.debug(f"Пара {couple_id} не видна в зоне {realm.value}")
        return None

    async def _query_couples(self) -> List[Couple]:
        """Пары, где текущая личность владелец (owner зона) или партнер (shared зона)."""
        couples = {}
        for realm in LOOKUP_REALMS:
            for couple in await self.store.query(RecordKind.COUPLE, {}, realm):
                couples.setdefault(couple.id, couple)
        # Собранная пара важнее незавершенной, затем самая старая
        return sorted(
            couples.values(),
            key=lambda c: (not c.is_paired, c.created_at is None, c.created_at or 0),
        )

    async def find_couple(self) -> Optional[Couple]:
        """
        Находит пару текущей личности, не создавая новую.

        Сначала проверяется запомненный couple_id (в обеих зонах), затем
        выполняется поиск "владелец ИЛИ партнер" по обеим зонам.

        Returns:
            Couple или None
        """
        identity = await self._require_identity()
        remembered = self.state.couple_id
        if remembered:
            couple = await self._fetch_couple_any_realm(remembered)
            if couple and couple.is_member(identity):
                return couple
            logger.info(f"Запомненная пара {remembered} больше не доступна, ищем заново")

        couples = await self._query_couples()
        if couples:
            return couples[0]
        return None

    async def ensure_couple(self) -> Couple:
        """
        Возвращает пару текущей личности, создавая ее при отсутствии.

        Повторные последовательные вызовы не создают вторую пару.

        Returns:
            Couple
        """
        couple = await self.find_couple()
        if couple is None:
            identity = await self._require_identity()
            try:
                couple_id = await self.store.create(RecordKind.COUPLE, {"owner_identity": identity}, Realm.OWNER)
                couple = await self.store.fetch(RecordKind.COUPLE, couple_id, Realm.OWNER)
                logger.info(f"Создана пара {couple.id} (владелец: {identity})")
            except ConflictError:
                # Пару уже создало другое устройство этого аккаунта
                logger.warning(f"Пара для {identity} уже существует, используем ее")
                owned = await self.store.query(RecordKind.COUPLE, {}, Realm.OWNER)
                if not owned:
                    raise
                couple = owned[0]
        self.state.update(couple_id=couple.id)
        return couple

    # ==================== Приглашение ====================

    async def _fetch_owned_couple(self, couple_id: str) -> Couple:
        try:
            return await self.store.fetch(RecordKind.COUPLE, couple_id, Realm.OWNER)
        except NotFoundError:
            try:
                await self.store.fetch(RecordKind.COUPLE, couple_id, Realm.SHARED)
            except NotFoundError:
                raise NotFoundError(f"Пара {couple_id} не найдена")
            raise PermissionDeniedError(
                "Приглашать может только создатель пары. Попроси партнера прислать ссылку."
            )

    async def _find_invite(self, couple_id: str, token: str) -> Optional[InviteShare]:
        invites = await self.store.query(RecordKind.INVITE, {"couple_id": couple_id, "token": token}, Realm.OWNER)
        return invites[0] if invites else None

    def _make_link(self, couple_id: str, token: str, invite: Optional[InviteShare]) -> InviteLink:
        return InviteLink(
            couple_id=couple_id,
            token=token,
            url=build_share_url(token, self.settings.share_base_url),
            share_id=invite.id if invite else None,
        )

    async def _existing_link(self, couple: Couple) -> Optional[InviteLink]:
        if not couple.invite_token:
            return None
        invite = await self._find_invite(couple.id, couple.invite_token)
        if invite is not None and not invite.is_open:
            return None
        if invite is None:
            invite = await self._create_invite_record(couple.id, couple.invite_token)
        return self._make_link(couple.id, couple.invite_token, invite)

    async def _create_invite_record(self, couple_id: str, token: str) -> Optional[InviteShare]:
        identity = await self._require_identity()
        try:
            invite_id = await self.store.create(
                RecordKind.INVITE,
                {"couple_id": couple_id, "token": token, "owner_identity": identity},
                Realm.OWNER,
            )
        except ConflictError:
            # Параллельное нажатие уже создало запись для этого токена
            return await self._find_invite(couple_id, token)
        return await self.store.fetch(RecordKind.INVITE, invite_id, Realm.OWNER)

    async def create_invite_link(self, couple: Couple) -> InviteLink:
        """
        Выпускает одноразовое приглашение для пары.

        Повторные вызовы возвращают уже выпущенное приглашение.

        Args:
            couple: Пара текущего пользователя

        Returns:
            InviteLink со ссылкой для передачи партнеру

        Raises:
            PermissionDeniedError: Пара видна только через shared зону (пользователь не владелец)
            AlreadyClaimedError: В паре уже два участника
        """
        owned = await self._fetch_owned_couple(couple.id)
        if owned.is_paired:
            raise AlreadyClaimedError("В паре уже два участника")

        link = await self._existing_link(owned)
        if link is not None:
            logger.info(f"Используем уже выпущенное приглашение для пары {owned.id}")
            self.state.update(share_url=link.url)
            return link

        token = new_invite_token()
        try:
            updated = await self.store.update(
                RecordKind.COUPLE, owned.id, {"invite_token": token}, owned.version, Realm.OWNER
            )
        except ConflictError:
            logger.warning(f"Конфликт версии пары {owned.id} при выпуске приглашения, перечитываем")
            refreshed = await self._fetch_owned_couple(owned.id)
            if refreshed.is_paired:
                raise AlreadyClaimedError("В паре уже два участника")
            link = await self._existing_link(refreshed)
            if link is None:
                updated = await self.store.update(
                    RecordKind.COUPLE, refreshed.id, {"invite_token": token}, refreshed.version, Realm.OWNER
                )
                link = self._make_link(updated.id, token, await self._create_invite_record(updated.id, token))
            self.state.update(share_url=link.url)
            return link

        invite = await self._create_invite_record(updated.id, token)
        link = self._make_link(updated.id, token, invite)
        logger.info(f"Выпущено приглашение для пары {updated.id}")
        self.state.update(share_url=link.url)
        return link

    # ==================== Принятие приглашения ====================

    async def accept_invite_link(self, url: str) -> PairingState:
        """
        Принимает приглашение партнера.

        Args:
            url: Ссылка share, deep link rc://accept?share=..., rc://invite/<код> или код

        Returns:
            PairingState после принятия

        Raises:
            InvalidInviteLinkError: Ссылку не удалось разобрать
            AlreadyClaimedError: Приглашение уже использовано
            PermissionDeniedError: Попытка принять собственное приглашение
        """
        await self._require_identity()
        token = parse_invite_token(url, self.settings.deep_link_scheme)
        couple = await self.store.claim(token)
        logger.info(f"Приглашение в пару {couple.id} принято")
        self.state.update(couple_id=couple.id)

        status = await self.check_pairing_status()
        if not status.is_paired:
            # Связь еще не видна (задержка распространения) - проставляем явно
            await self.link_partner(couple.id)
            status = await self.check_pairing_status()
        return status

    async def link_partner(self, couple_id: str) -> Couple:
        """
        Записывает текущую личность партнером пары, видимой через shared зону.

        Raises:
            NotFoundError: Пара не видна текущему пользователю
            AlreadyClaimedError: У пары уже другой партнер
        """
        identity = await self._require_identity()
        couple = await self.store.fetch(RecordKind.COUPLE, couple_id, Realm.SHARED)
        if couple.partner_identity == identity:
            return couple
        if couple.partner_identity:
            raise AlreadyClaimedError("У пары уже есть партнер")
        try:
            linked = await self.store.update(
                RecordKind.COUPLE,
                couple_id,
                {"partner_identity": identity, "invite_token": None},
                couple.version,
                Realm.SHARED,
            )
        except ConflictError:
            linked = await self.store.fetch(RecordKind.COUPLE, couple_id, Realm.SHARED)
            if linked.partner_identity != identity:
                raise AlreadyClaimedError("У пары уже есть партнер")
        logger.info(f"Партнер {identity} связан с парой {couple_id}")
        return linked

    # ==================== Статус ====================

    async def check_pairing_status(self) -> PairingState:
        """
        Определяет, собрана ли пара. Ничего не пишет в хранилище.

        Returns:
            PairingState (также публикуется в state)
        """
        identity = await self._require_identity()
        couple = await self.find_couple()
        if couple is None:
            status = PairingState()
        else:
            partner = couple.partner_of(identity)
            status = PairingState(is_paired=partner is not None, partner_identity=partner, couple_id=couple.id)
        self.state.apply_pairing(status)
        return status

    async def refresh_pairing(self) -> PairingState:
        """
        Проверяет статус и чинит частично завершенное принятие приглашения.

        Если пара видна через shared зону (приглашение принято), но партнер
        в ней еще не записан, выполняется link_partner.
        """
        status = await self.check_pairing_status()
        if status.is_paired or not status.couple_id:
            return status
        try:
            couple = await self.store.fetch(RecordKind.COUPLE, status.couple_id, Realm.SHARED)
        except NotFoundError:
            return status
        identity = await self._require_identity()
        if couple.owner_identity != identity and not couple.partner_identity:
            logger.info(f"Восстанавливаем связь с парой {couple.id} после частичного принятия")
            await self.link_partner(couple.id)
            status = await self.check_pairing_status()
        return status

    async def complete_pairing(self) -> bool:
        """
        Отзывает открытые приглашения собранной пары (только у владельца).

        Ошибки отзыва логируются: реальную защиту дает условный claim.

        Returns:
            True, если пара собрана
        """
        status = await self.check_pairing_status()
        if not status.is_paired:
            return False
        try:
            invites = await self.store.query(RecordKind.INVITE, {"couple_id": status.couple_id}, Realm.OWNER)
        except CheckinError as e:
            logger.warning(f"Не удалось получить приглашения пары {status.couple_id}: {e}")
            return True
        for invite in invites:
            if not invite.is_open:
                continue
            try:
                await self.store.update(RecordKind.INVITE, invite.id, {"revoked": True}, invite.version, Realm.OWNER)
                logger.info(f"Приглашение {invite.id} отозвано")
            except CheckinError as e:
                logger.warning(f"Не удалось отозвать приглашение {invite.id}: {e}")
        self.state.update(share_url=None)
        return True
