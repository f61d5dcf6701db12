"""SQL-backed instance metadata store."""

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowhub.core.domain.instance import InstanceStatus
from flowhub.core.interfaces import InstanceStore
from flowhub.core.models import (
    Instance,
    InstanceRecord,
    MonitoringConfig,
    MonitoringConfigRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

_MONITORING_CONFIG_ID = 1


class SQLInstanceStore(InstanceStore):
    """InstanceStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, instance: Instance) -> Instance:
        async with self._session_factory() as session:
            record = await session.get(InstanceRecord, instance.id)
            if record is None:
                record = instance.to_record()
                session.add(record)
            else:
                record.client_name = instance.client_name
                record.subdomain = instance.subdomain
                record.port = instance.port
                record.status = instance.status
            record.updated_at = utc_now()
            await session.commit()
            await session.refresh(record)
            return Instance.model_validate(record)

    async def get(self, instance_id: str) -> Instance | None:
        async with self._session_factory() as session:
            record = await session.get(InstanceRecord, instance_id)
            return Instance.model_validate(record) if record else None

    async def update_status(
        self, instance_id: str, status: InstanceStatus
    ) -> Instance | None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(InstanceRecord)
                .where(InstanceRecord.id == instance_id)
                .values(status=status, updated_at=utc_now())
            )
            await session.commit()
            if result.rowcount == 0:
                return None
            record = await session.get(InstanceRecord, instance_id)
            return Instance.model_validate(record) if record else None

    async def list(self) -> list[Instance]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(InstanceRecord).order_by(InstanceRecord.created_at)
            )
            return [Instance.model_validate(r) for r in result.scalars().all()]

    async def delete(self, instance_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(InstanceRecord).where(InstanceRecord.id == instance_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def used_ports(self) -> set[int]:
        async with self._session_factory() as session:
            result = await session.execute(select(InstanceRecord.port))
            return set(result.scalars().all())

    async def load_monitoring_config(self) -> MonitoringConfig | None:
        async with self._session_factory() as session:
            record = await session.get(MonitoringConfigRecord, _MONITORING_CONFIG_ID)
            if record is None:
                return None
            return MonitoringConfig.model_validate(record.data)

    async def save_monitoring_config(self, config: MonitoringConfig) -> None:
        async with self._session_factory() as session:
            record = await session.get(MonitoringConfigRecord, _MONITORING_CONFIG_ID)
            if record is None:
                record = MonitoringConfigRecord(id=_MONITORING_CONFIG_ID)
                session.add(record)
            record.data = config.model_dump(mode="json")
            record.updated_at = utc_now()
            await session.commit()
