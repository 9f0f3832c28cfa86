"""Duyuru deposu ve okunmamış duyuru takibi."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from config import settings
from lms.announcement import Announcement, AnnouncementType, parse_timestamp, utcnow
from lms.clock import Clock
from lms.errors import ValidationError
from lms.loader import ANNOUNCEMENT_PARTITIONS, Loader, Partition
from lms.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


class AnnouncementStore:
    """Etkin, planlanmış ve arşivlenmiş duyuruların tek parça anlık görüntüsü.

    Yazma işlemleri hataları (`WriteError`, `ConnectivityError`) çağırana
    iletir; başarılı her yazmadan sonra anlık görüntü yeniden yüklenir.
    """

    def __init__(
        self,
        store,
        *,
        interval: Optional[float] = None,
        background_interval: Optional[float] = None,
        clock: Optional[Clock] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.loader = Loader(store, ANNOUNCEMENT_PARTITIONS, name="announcements")
        self.scheduler = RefreshScheduler(
            self.loader, interval=interval, background_interval=background_interval, clock=clock
        )
        self._now = now or utcnow

    @property
    def active(self) -> List[Announcement]:
        return list(self.loader.snapshot.get(Partition.ACTIVE))

    @property
    def scheduled(self) -> List[Announcement]:
        return list(self.loader.snapshot.get(Partition.SCHEDULED))

    @property
    def archived(self) -> List[Announcement]:
        return list(self.loader.snapshot.get(Partition.ARCHIVED))

    @property
    def state(self):
        return self.loader.state

    async def refresh(self) -> bool:
        return await self.loader.refresh()

    def find(self, announcement_id: str) -> Optional[Announcement]:
        for partition in ANNOUNCEMENT_PARTITIONS:
            for announcement in self.loader.snapshot.get(partition):
                if announcement.id == announcement_id:
                    return announcement
        return None

    def for_audience(self, audience: AnnouncementType) -> List[Announcement]:
        """Belirtilen kitleye şu an gösterilecek etkin duyurular."""
        now = self._now()
        return [a for a in self.active if a.targets(audience) and a.is_live(now)]

    async def create(
        self,
        title: str,
        content: str,
        type: AnnouncementType,
        start_date: datetime,
        expiry_date: datetime,
    ) -> Announcement:
        # Saat dilimi belirtilmemiş tarihler UTC kabul edilir
        start_date = parse_timestamp(start_date)
        expiry_date = parse_timestamp(expiry_date)
        if start_date is None or expiry_date is None:
            raise ValidationError("Başlangıç ve bitiş tarihleri zorunludur.")
        if expiry_date <= start_date:
            raise ValidationError("Bitiş tarihi başlangıç tarihinden sonra olmalı.")
        now = self._now()
        announcement = Announcement(
            title=title,
            content=content,
            type=AnnouncementType(type),
            start_date=start_date,
            expiry_date=expiry_date,
            created_at=now,
            last_modified=now,
        )
        created = await self.store.insert(announcement)
        logger.info(f"Duyuru oluşturuldu: {announcement.title} ({announcement.type.value})")
        await self.loader.reload()
        return created

    async def update(self, announcement: Announcement) -> Announcement:
        updated = await self.store.update(replace(announcement, last_modified=self._now()))
        await self.loader.reload()
        return updated

    async def archive(self, announcement: Announcement) -> Announcement:
        logger.info(f"Duyuru arşivleniyor: {announcement.id}")
        return await self.update(replace(announcement, is_active=False, is_archived=True))

    async def restore(self, announcement: Announcement) -> Announcement:
        logger.info(f"Duyuru geri yükleniyor: {announcement.id}")
        return await self.update(replace(announcement, is_active=True, is_archived=False))


class AnnouncementTracker:
    """Görülmüş duyuru kimliklerini bir JSON dosyasında saklar."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path or settings.seen_announcements_file).expanduser()
        self._seen: Set[str] = set()
        self.load()

    @property
    def seen_ids(self) -> Set[str]:
        return set(self._seen)

    def load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self._seen = set(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Görülen duyurular okunamadı ({self.path}): {e}")
            self._seen = set()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(sorted(self._seen), f, indent=2)

    def has_seen(self, announcement: Announcement) -> bool:
        return announcement.id in self._seen

    def mark_seen(self, announcement: Announcement) -> None:
        self._seen.add(announcement.id)
        self.save()

    def mark_all_seen(self, announcements: Iterable[Announcement]) -> None:
        self._seen.update(a.id for a in announcements)
        self.save()

    def unseen(
        self,
        announcements: Iterable[Announcement],
        audience: AnnouncementType = AnnouncementType.LIBRARIAN,
        now: Optional[datetime] = None,
    ) -> List[Announcement]:
        now = now or utcnow()
        return [
            a for a in announcements
            if a.targets(audience) and a.is_live(now) and not self.has_seen(a)
        ]

    def unseen_count(
        self,
        announcements: Iterable[Announcement],
        audience: AnnouncementType = AnnouncementType.LIBRARIAN,
        now: Optional[datetime] = None,
    ) -> int:
        return len(self.unseen(announcements, audience, now))
