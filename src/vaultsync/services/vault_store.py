"""Vault access through the Bitwarden CLI (``bw``).

The CLI is driven with ``asyncio.create_subprocess_exec`` and never through a
shell. Login uses an API key, unlocking reads the master password from the
environment, and the resulting session token is handed to later commands
through ``BW_SESSION``.

A listing that suddenly comes back empty after earlier non-empty listings
usually means the CLI session expired. That case is retried through a
bounded :class:`RetryPolicy` that re-authenticates between attempts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import ValidationError

from vaultsync.config import Settings
from vaultsync.errors import AuthenticationFailure, StoreUnavailable, VaultCommandError
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.metrics import SyncMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SHELL_METACHARACTERS = re.compile(r"[;&|`$<>(){}\[\]\\'\"\s]")


class VaultStore(Protocol):
    async def fetch_all_items(self) -> list[VaultItem]: ...

    async def fetch_item(self, item_id: str) -> VaultItem | None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Args:
        attempts: Total tries including the first one.
        base_delay: Delay before the second try, in seconds.
        max_delay: Upper bound for any single delay.
    """

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...] = (StoreUnavailable,),
    ) -> T:
        """Call ``operation`` until it succeeds or attempts run out.

        Raises:
            The last exception raised by ``operation``.
        """
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except retry_on as exc:
                if attempt == self.attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs", attempt, self.attempts, exc, delay
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")


def validate_server_url(url: str) -> None:
    """Reject non-https URLs and anything containing shell metacharacters.

    Raises:
        AuthenticationFailure: If the URL is unusable.
    """
    if not url.startswith("https://") or _SHELL_METACHARACTERS.search(url):
        raise AuthenticationFailure(f"Invalid vault server URL: {url!r}")


class BitwardenCliVaultStore:
    """Vault store backed by the ``bw`` command-line client."""

    def __init__(
        self,
        server_url: str = "",
        client_id: str = "",
        client_secret: str = "",
        master_password: str = "",
        *,
        cli_path: str = "bw",
        data_dir: str = "",
        organization_id: str = "",
        folder_id: str = "",
        collection_id: str = "",
        command_timeout: float = 30.0,
        list_timeout: float = 120.0,
        retry_policy: RetryPolicy | None = None,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self.server_url = server_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.master_password = master_password
        self.cli_path = cli_path
        self.data_dir = data_dir
        self.organization_id = organization_id
        self.folder_id = folder_id
        self.collection_id = collection_id
        self.command_timeout = command_timeout
        self.list_timeout = list_timeout
        self.retry_policy = retry_policy or RetryPolicy(attempts=2)
        self.metrics = metrics or SyncMetrics()
        self._session: str | None = None
        self._had_items = False

    @classmethod
    def from_settings(
        cls, settings: Settings, metrics: SyncMetrics | None = None
    ) -> BitwardenCliVaultStore:
        return cls(
            settings.vault_server_url,
            settings.vault_client_id,
            settings.vault_client_secret,
            settings.vault_master_password,
            cli_path=settings.vault_cli_path,
            data_dir=settings.vault_data_dir,
            organization_id=settings.vault_organization_id,
            folder_id=settings.vault_folder_id,
            collection_id=settings.vault_collection_id,
            command_timeout=settings.vault_command_timeout_seconds,
            list_timeout=settings.vault_list_timeout_seconds,
            metrics=metrics,
        )

    @property
    def authenticated(self) -> bool:
        return bool(self._session)

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["BW_CLIENTID"] = self.client_id
        env["BW_CLIENTSECRET"] = self.client_secret
        env["BW_PASSWORD"] = self.master_password
        env["BW_NOINTERACTION"] = "true"
        if self.data_dir:
            env["BITWARDENCLI_APPDATA_DIR"] = self.data_dir
        if self._session:
            env["BW_SESSION"] = self._session
        return env

    async def _run(self, *args: str, timeout: float | None = None) -> str:
        """Run one ``bw`` command and return its stdout.

        Raises:
            VaultCommandError: Non-zero exit, timeout or missing binary.
        """
        command = args[0] if args else ""
        try:
            stdout = await self._exec(command, args, timeout)
        except VaultCommandError:
            self.metrics.record_vault_call(command, success=False)
            raise
        self.metrics.record_vault_call(command, success=True)
        return stdout

    async def _exec(self, command: str, args: tuple[str, ...], timeout: float | None) -> str:
        effective_timeout = timeout or self.command_timeout
        logger.debug("Invoking bw %s", " ".join(args[:2]))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(),
            )
        except FileNotFoundError as exc:
            raise VaultCommandError(command, f"executable not found: {self.cli_path}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=effective_timeout
            )
        except TimeoutError:
            logger.error("bw %s timed out after %ss", command, effective_timeout)
            proc.kill()
            await proc.wait()
            raise VaultCommandError(command, f"timed out after {effective_timeout} seconds") from None

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if proc.returncode:
            detail = stderr.strip() or stdout.strip() or f"exit code {proc.returncode}"
            raise VaultCommandError(command, detail)
        return stdout

    async def authenticate(self) -> None:
        """Configure the server, log in with the API key and unlock the vault.

        Raises:
            AuthenticationFailure: If any step fails or no session token results.
        """
        if not self.client_id or not self.client_secret:
            raise AuthenticationFailure("Vault client id and client secret are required")
        self._session = None
        try:
            if self.server_url:
                validate_server_url(self.server_url)
                await self._configure_server()
            await self._login()
            session = (
                await self._run("unlock", "--passwordenv", "BW_PASSWORD", "--raw")
            ).strip()
        except VaultCommandError as exc:
            raise AuthenticationFailure(str(exc)) from exc
        if not session:
            raise AuthenticationFailure("Vault unlock returned no session token")
        self._session = session
        logger.info("Authenticated with vault")

    async def _configure_server(self) -> None:
        try:
            await self._run("config", "server", self.server_url)
        except VaultCommandError:
            # The CLI refuses to switch servers while logged in
            logger.warning("Setting vault server failed, logging out and retrying")
            await self.logout()
            await self._run("config", "server", self.server_url)

    async def _login(self) -> None:
        try:
            await self._run("login", "--apikey", "--raw")
        except VaultCommandError as exc:
            if "already logged in" not in exc.detail.lower():
                raise
            logger.debug("bw reports an existing login, reusing it")

    async def logout(self) -> None:
        try:
            await self._run("logout")
        except VaultCommandError as exc:
            logger.debug("bw logout failed: %s", exc.detail)
        self._session = None

    def _list_args(self) -> list[str]:
        args = ["list", "items", "--raw"]
        if self.organization_id:
            args += ["--organizationid", self.organization_id]
        if self.folder_id:
            args += ["--folderid", self.folder_id]
        if self.collection_id:
            args += ["--collectionid", self.collection_id]
        return args

    @staticmethod
    def _parse_items(raw: str) -> list[VaultItem]:
        try:
            payload = json.loads(raw or "[]")
            items = [VaultItem.model_validate(entry) for entry in payload]
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise VaultCommandError("list", f"unparseable item listing: {exc}") from exc
        return [item for item in items if item.deleted_date is None]

    async def _list_items(self) -> list[VaultItem]:
        return self._parse_items(await self._run(*self._list_args(), timeout=self.list_timeout))

    async def _reauthenticate_and_list(self) -> list[VaultItem]:
        await self.authenticate()
        items = await self._list_items()
        if not items:
            raise StoreUnavailable("Vault returned no items after re-authentication")
        return items

    async def fetch_all_items(self) -> list[VaultItem]:
        """List every live item visible to the configured filters.

        Raises:
            AuthenticationFailure: Login failed, or the session could not be
                restored after the listing went empty.
            VaultCommandError: The listing command itself failed.
        """
        if not self.authenticated:
            await self.authenticate()
        items = await self._list_items()
        if items:
            self._had_items = True
            return items
        if not self._had_items:
            logger.info("Vault listing is empty, treating it as an empty vault")
            return items

        logger.warning("Vault listing went empty after earlier results, re-authenticating")
        try:
            return await self.retry_policy.run(self._reauthenticate_and_list)
        except StoreUnavailable as exc:
            raise AuthenticationFailure(
                "Vault session could not be restored; listing stays empty"
            ) from exc

    async def fetch_item(self, item_id: str) -> VaultItem | None:
        """Fetch one item with its full payload, or None if the vault has no such item."""
        if not item_id or item_id.startswith("-"):
            raise ValueError(f"Invalid item id: {item_id!r}")
        if not self.authenticated:
            await self.authenticate()
        try:
            raw = await self._run("get", "item", item_id, "--raw")
        except VaultCommandError as exc:
            if "not found" in exc.detail.lower():
                return None
            raise
        try:
            return VaultItem.model_validate_json(raw)
        except ValidationError as exc:
            raise VaultCommandError("get", f"unparseable item {item_id}: {exc}") from exc
