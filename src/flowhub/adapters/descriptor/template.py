"""Filesystem descriptor provider.

Layout per instance:
    {instances_dir}/{instance_id}/
        descriptor.json   InstanceDescriptor (JSON)
        .env              environment handed to the container
        data/ workflows/ credentials/ logs/
"""

import asyncio
import json
import logging
import secrets
import shutil
from pathlib import Path

from pydantic import ValidationError

from flowhub.app.config import get_settings
from flowhub.core.interfaces import DescriptorProvider, InstanceDescriptor
from flowhub.core.models.instance import utc_now
from flowhub.core.naming import (
    LABEL_CLIENT_NAME,
    LABEL_INSTANCE_ID,
    LABEL_MANAGED,
    runtime_id,
    volume_name,
)

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "descriptor.json"
ENV_FILE = ".env"
INSTANCE_SUBDIRS = ("data", "workflows", "credentials", "logs")
REQUIRED_ENV = (
    "N8N_BASIC_AUTH_ACTIVE",
    "N8N_BASIC_AUTH_USER",
    "N8N_BASIC_AUTH_PASSWORD",
    "N8N_ENCRYPTION_KEY",
    "N8N_PORT",
)


class TemplateDescriptorProvider(DescriptorProvider):
    """Writes and validates per-instance descriptors on local disk."""

    def __init__(self, instances_dir: str | Path | None = None) -> None:
        settings = get_settings()
        self._runtime = settings.runtime
        self._root = Path(instances_dir or settings.storage.instances_dir)

    def instance_dir(self, instance_id: str) -> Path:
        return self._root / instance_id

    def descriptor_path(self, instance_id: str) -> Path:
        return self.instance_dir(instance_id) / DESCRIPTOR_FILE

    def _build(
        self,
        instance_id: str,
        port: int,
        client_name: str,
        username: str,
        password: str,
    ) -> InstanceDescriptor:
        env = {
            "N8N_BASIC_AUTH_ACTIVE": "true",
            "N8N_BASIC_AUTH_USER": username,
            "N8N_BASIC_AUTH_PASSWORD": password,
            "N8N_ENCRYPTION_KEY": secrets.token_hex(32),
            "N8N_HOST": "0.0.0.0",
            "N8N_PORT": str(self._runtime.container_port),
            "N8N_PROTOCOL": "http",
            "WEBHOOK_URL": f"http://localhost:{port}/",
            "GENERIC_TIMEZONE": self._runtime.timezone,
            "N8N_DIAGNOSTICS_ENABLED": "false",
        }
        return InstanceDescriptor(
            instance_id=instance_id,
            runtime_id=runtime_id(instance_id),
            client_name=client_name,
            image=self._runtime.image,
            host_port=port,
            container_port=self._runtime.container_port,
            volume_name=volume_name(instance_id),
            mount_path=self._runtime.mount_path,
            env=env,
            labels={
                LABEL_INSTANCE_ID: instance_id,
                LABEL_CLIENT_NAME: client_name,
                LABEL_MANAGED: "true",
            },
            created_at=utc_now(),
        )

    def _write(self, descriptor: InstanceDescriptor) -> Path:
        directory = self.instance_dir(descriptor.instance_id)
        directory.mkdir(parents=True, exist_ok=True)
        for sub in INSTANCE_SUBDIRS:
            (directory / sub).mkdir(exist_ok=True)

        path = directory / DESCRIPTOR_FILE
        path.write_text(descriptor.model_dump_json(indent=2), encoding="utf-8")

        env_path = directory / ENV_FILE
        env_path.write_text(
            "".join(f"{k}={v}\n" for k, v in descriptor.env.items()), encoding="utf-8"
        )
        env_path.chmod(0o600)
        return path

    async def materialize(
        self,
        instance_id: str,
        port: int,
        client_name: str,
        username: str,
        password: str,
    ) -> Path:
        descriptor = self._build(instance_id, port, client_name, username, password)
        path = await asyncio.to_thread(self._write, descriptor)
        logger.info(
            "Materialized descriptor for %s at %s",
            instance_id,
            path,
            extra={"instance_id": instance_id},
        )
        return path

    def _validate(self, instance_id: str) -> list[str]:
        path = self.descriptor_path(instance_id)
        if not path.is_file():
            return [f"Descriptor not found: {path}"]

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            return [f"Descriptor is not readable JSON: {exc}"]

        try:
            descriptor = InstanceDescriptor.model_validate(raw)
        except ValidationError as exc:
            return [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]

        errors: list[str] = []
        if descriptor.instance_id != instance_id:
            errors.append(
                f"instance_id mismatch: {descriptor.instance_id} != {instance_id}"
            )
        if descriptor.runtime_id != runtime_id(instance_id):
            errors.append(f"runtime_id mismatch: {descriptor.runtime_id}")
        if not descriptor.image:
            errors.append("image must not be empty")
        if not 1024 <= descriptor.host_port <= 65535:
            errors.append(f"host_port out of range: {descriptor.host_port}")
        missing = [key for key in REQUIRED_ENV if not descriptor.env.get(key)]
        if missing:
            errors.append(f"missing environment: {', '.join(missing)}")
        return errors

    async def validate(self, instance_id: str) -> tuple[bool, list[str]]:
        errors = await asyncio.to_thread(self._validate, instance_id)
        return (not errors, errors)

    async def load(self, instance_id: str) -> InstanceDescriptor:
        text = await asyncio.to_thread(
            self.descriptor_path(instance_id).read_text, encoding="utf-8"
        )
        return InstanceDescriptor.model_validate_json(text)

    async def remove(self, instance_id: str) -> None:
        directory = self.instance_dir(instance_id)
        await asyncio.to_thread(shutil.rmtree, directory, ignore_errors=True)
        logger.info("Removed instance directory: %s", directory)

    async def list_instance_dirs(self) -> list[str]:
        def _scan() -> list[str]:
            if not self._root.is_dir():
                return []
            return sorted(p.name for p in self._root.iterdir() if p.is_dir())

        return await asyncio.to_thread(_scan)
