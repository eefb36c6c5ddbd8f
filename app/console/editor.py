"""Role and user edit forms, minus the rendering.

An editor holds the record fields, a ``GrantSelection`` over the tenant's
catalog and a ``CodeValidation`` gate for the unique field.  ``save`` waits for
the latest uniqueness check and refuses to submit when it fails, including
when the validator cannot be reached.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from app.console.client import ConsoleClient
from app.domain.models import RefItem
from app.domain.permission_tree import TreeNode, build_tree, extract_checked, toggle
from app.infra.logging import get_logger

logger = get_logger(__name__)


class GrantSelection:
    def __init__(self, catalog: Iterable[RefItem], checked_ids: Iterable[str] = (), *, root_name: str) -> None:
        self.root_name = root_name
        self.catalog = list(catalog)
        self.tree: list[TreeNode] = build_tree(self.catalog, checked_ids, root_name=root_name)
        self.selected_ids: set[str] = extract_checked(self.tree)

    def toggle(self, node_id: str, checked: bool) -> None:
        self.tree = toggle(self.tree, node_id, checked)
        self.selected_ids = extract_checked(self.tree)

    def reload(self, catalog: Iterable[RefItem]) -> None:
        """Rebuild against a fresh catalog, keeping whatever still exists."""
        self.catalog = list(catalog)
        self.tree = build_tree(self.catalog, self.selected_ids, root_name=self.root_name)
        self.selected_ids = extract_checked(self.tree)

    def sorted_ids(self) -> list[str]:
        return sorted(self.selected_ids)


class CodeValidation:
    """Latest-wins async check of one unique field.

    ``submit`` starts a check in the background and cancels any older one
    still running.  ``result`` waits for whichever check is current when it
    finishes and re-raises its error.
    """

    def __init__(self, check: Callable[[str], Awaitable[None]]) -> None:
        self._check = check
        self._task: asyncio.Task[None] | None = None
        self.value: str | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, value: str) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.value = value
        self._task = asyncio.create_task(self._check(value))

    def reset(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.value = None

    async def result(self) -> None:
        while self._task is not None:
            task = self._task
            await asyncio.wait({task})
            if task is self._task:
                task.result()
                return


class _GrantEditor(ABC):
    root_name = ""
    grant_field = ""

    def __init__(self, client: ConsoleClient, tenant_id: str) -> None:
        self.client = client
        self.tenant_id = tenant_id
        self.record_id: str | None = None
        self.fields: dict[str, Any] = {}
        self.selection = GrantSelection((), root_name=self.root_name)
        self.validation = CodeValidation(self._validate)

    @abstractmethod
    async def _fetch_catalog(self) -> list[RefItem]: ...

    @abstractmethod
    async def _fetch_record(self, record_id: str) -> dict[str, Any]: ...

    @abstractmethod
    async def _validate(self, value: str) -> None: ...

    @abstractmethod
    async def _submit(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def _record_fields(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def load(self, record_id: str | None = None) -> None:
        catalog = await self._fetch_catalog()
        checked: list[str] = []
        self.record_id = record_id
        self.validation.reset()
        if record_id is not None:
            record = await self._fetch_record(record_id)
            self.fields = self._record_fields(record)
            checked = list(record.get(self.grant_field) or [])
        else:
            self.fields = {}
        self.selection = GrantSelection(catalog, checked, root_name=self.root_name)

    async def refresh_catalog(self) -> None:
        self.selection.reload(await self._fetch_catalog())

    def set_field(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def toggle(self, node_id: str, checked: bool) -> None:
        self.selection.toggle(node_id, checked)

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"tenantId": self.tenant_id, **self.fields}
        body[self.grant_field] = self.selection.sorted_ids()
        if self.record_id is not None:
            body["id"] = self.record_id
        return body

    async def save(self) -> dict[str, Any]:
        await self.validation.result()
        saved = await self._submit(self.payload())
        self.record_id = str(saved["id"])
        logger.info("saved %s id=%s grants=%d", type(self).__name__, self.record_id, len(self.selection.selected_ids))
        return saved


class RoleEditor(_GrantEditor):
    root_name = "Permissions"
    grant_field = "permissionIds"

    async def _fetch_catalog(self) -> list[RefItem]:
        return [RefItem.model_validate(item) for item in await self.client.ref_permissions()]

    async def _fetch_record(self, record_id: str) -> dict[str, Any]:
        return await self.client.get_role(record_id)

    def _record_fields(self, record: dict[str, Any]) -> dict[str, Any]:
        return {"code": record["code"], "name": record["name"], "description": record.get("description")}

    async def _validate(self, value: str) -> None:
        await self.client.validate_role_code(self.tenant_id, value, exclude_id=self.record_id)

    async def _submit(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.record_id is None:
            return await self.client.create_role(payload)
        return await self.client.update_role(self.record_id, payload)

    def set_code(self, code: str) -> None:
        self.set_field("code", code)
        self.validation.submit(code)


class UserEditor(_GrantEditor):
    root_name = "Roles"
    grant_field = "roleIds"

    async def _fetch_catalog(self) -> list[RefItem]:
        return [RefItem.model_validate(item) for item in await self.client.ref_roles()]

    async def _fetch_record(self, record_id: str) -> dict[str, Any]:
        return await self.client.get_user(record_id)

    def _record_fields(self, record: dict[str, Any]) -> dict[str, Any]:
        return {
            "fullname": record.get("fullname"),
            "email": record.get("email"),
            "isActive": record.get("isActive", True),
        }

    async def _validate(self, value: str) -> None:
        await self.client.validate_username(self.tenant_id, value, exclude_id=self.record_id)

    async def _submit(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.record_id is None:
            return await self.client.create_user(payload)
        return await self.client.update_user(self.record_id, payload)

    def set_username(self, username: str) -> None:
        # Usernames are fixed once the user exists.
        if self.record_id is not None:
            raise ValueError("username cannot be changed")
        self.set_field("username", username)
        self.validation.submit(username)
