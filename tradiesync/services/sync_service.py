"""
Entity sync jobs: push local clients and invoices to an accounting provider.

Provider calls for a batch run concurrently, bounded by SYNC_CONCURRENCY.
Row outcomes are then written back one at a time in row order on the
request's session, together with their Sync Log entries.

Each row is attempted once per call. A failing row records its error and
the batch carries on.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tradiesync.exceptions import NotFoundError, ValidationError
from tradiesync.models.client import Client
from tradiesync.models.invoice import Invoice
from tradiesync.services import sync_log
from tradiesync.services.accounting.base import (
    ERROR_EXCERPT_LENGTH,
    AccountingProvider,
    ProviderAPIError,
    ProviderCredentials,
    ProviderError,
    SyncRowError,
)
from tradiesync.services.oauth_flow import OAuthFlowService
from tradiesync.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROW_ERRORS = (ProviderError, httpx.HTTPError)

# Returned instead of a reference id when a row is deliberately left alone
SKIPPED = object()


@dataclass
class SyncError:
    id: str
    name: Optional[str]
    error: str


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0
    total: int = 0
    errors: list[SyncError] = field(default_factory=list)


def _check_selector(entity_id: Optional[uuid.UUID], sync_all: bool, id_field: str) -> None:
    if bool(entity_id) == bool(sync_all):
        raise ValidationError(f"Either {id_field} or sync_all must be specified")


class SyncJob:
    def __init__(
        self,
        db: AsyncSession,
        provider: AccountingProvider,
        oauth_flow: OAuthFlowService,
        concurrency: int = 4,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.provider = provider
        self.oauth_flow = oauth_flow
        self.concurrency = max(1, concurrency)
        self.clock = clock

    # ── Row plumbing ────────────────────────────────────────────

    async def _run(self, rows: Sequence[T], call: Callable[[T], Awaitable[object]]) -> list:
        """Apply ``call`` to every row. Row-level errors come back as values, in row order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def attempt(row):
            async with semaphore:
                try:
                    return await call(row)
                except ROW_ERRORS as e:
                    return e
                except Exception as e:
                    # A bad row fails alone; siblings may already exist remotely
                    logger.exception(
                        f"Unexpected error syncing row to {self.provider.display_name}",
                        extra={"provider": self.provider.name, "entity_id": str(row.id)},
                    )
                    return e

        return await asyncio.gather(*(attempt(row) for row in rows))

    def _describe(self, exc: Exception) -> tuple[str, str]:
        """(message stored on the row, message written to the sync log)."""
        if isinstance(exc, ProviderAPIError):
            return str(exc), exc.body
        if isinstance(exc, httpx.HTTPError):
            message = f"{self.provider.display_name} request failed: {type(exc).__name__}"
            return message, message
        if isinstance(exc, ProviderError):
            message = str(exc)
            return message[:ERROR_EXCERPT_LENGTH], message
        message = f"Unexpected error while syncing to {self.provider.display_name}"
        return message, f"{message}: {type(exc).__name__}"

    def _apply_outcome(
        self,
        result: SyncResult,
        user_id: str,
        entity_type: str,
        row: Client | Invoice,
        label: Optional[str],
        outcome: object,
    ) -> None:
        if outcome is SKIPPED:
            result.synced += 1
            return

        is_invoice = entity_type == "invoice"
        ref_field = self.provider.invoice_ref_field if is_invoice else self.provider.client_ref_field
        synced_field = self.provider.invoice_synced_field if is_invoice else self.provider.client_synced_field
        error_field = self.provider.invoice_error_field if is_invoice else self.provider.client_error_field
        tracks_status = is_invoice and self.provider.name == "xero"

        if isinstance(outcome, Exception):
            stored, logged = self._describe(outcome)
            setattr(row, error_field, stored)
            if tracks_status:
                row.xero_sync_status = "error"
            sync_log.record(
                self.db, user_id, self.provider.name, entity_type, str(row.id),
                self.provider.sync_direction, "error", logged,
            )
            result.failed += 1
            result.errors.append(SyncError(id=str(row.id), name=label, error=stored))
            logger.warning(
                f"{self.provider.display_name} {entity_type} sync failed",
                extra={"provider": self.provider.name, "entity_id": str(row.id)},
            )
            return

        setattr(row, ref_field, outcome)
        setattr(row, synced_field, self.clock())
        setattr(row, error_field, None)
        if tracks_status:
            row.xero_sync_status = "synced"
        sync_log.record(
            self.db, user_id, self.provider.name, entity_type, str(row.id),
            self.provider.sync_direction, "success",
        )
        result.synced += 1

    # ── Clients ─────────────────────────────────────────────────

    async def _select_clients(self, user_id: str, client_id: Optional[uuid.UUID]) -> list[Client]:
        query = select(Client).where(Client.user_id == user_id, Client.deleted_at.is_(None))
        if client_id:
            query = query.where(Client.id == client_id)
        result = await self.db.execute(query.order_by(Client.created_at, Client.id))
        clients = list(result.scalars().all())
        if client_id and not clients:
            raise NotFoundError("Client")
        return clients

    async def _push_clients(
        self, user_id: str, credentials: ProviderCredentials, clients: Sequence[Client]
    ) -> SyncResult:
        outcomes = await self._run(clients, lambda client: self.provider.push_client(credentials, client))

        result = SyncResult(total=len(clients))
        for client, outcome in zip(clients, outcomes):
            self._apply_outcome(result, user_id, "client", client, client.name, outcome)
        await self.db.commit()
        return result

    async def sync_clients(
        self, user_id: str, client_id: Optional[uuid.UUID] = None, sync_all: bool = False
    ) -> SyncResult:
        _check_selector(client_id, sync_all, "client_id")
        credentials = await self.oauth_flow.get_credentials(user_id)
        clients = await self._select_clients(user_id, client_id)

        result = await self._push_clients(user_id, credentials, clients)
        logger.info(
            f"{self.provider.display_name} client sync complete: {result.synced} succeeded, {result.failed} failed",
            extra={"provider": self.provider.name},
        )
        return result

    # ── Invoices ────────────────────────────────────────────────

    async def _select_invoices(self, user_id: str, invoice_id: Optional[uuid.UUID]) -> list[Invoice]:
        query = (
            select(Invoice)
            .options(selectinload(Invoice.client))
            .where(Invoice.user_id == user_id, Invoice.deleted_at.is_(None))
        )
        if invoice_id:
            query = query.where(Invoice.id == invoice_id)
        elif self.provider.bulk_invoice_statuses is not None:
            query = query.where(Invoice.status.in_(self.provider.bulk_invoice_statuses))
        result = await self.db.execute(query.order_by(Invoice.created_at, Invoice.id))
        invoices = list(result.scalars().all())
        if invoice_id and not invoices:
            raise NotFoundError("Invoice")
        return invoices

    def _unsynced_clients(self, invoices: Sequence[Invoice]) -> list[Client]:
        pending: dict[uuid.UUID, Client] = {}
        for invoice in invoices:
            client = invoice.client
            if self.provider.skips_invoice(invoice) or client is None:
                continue
            if not self.provider.get_ref(client) and client.id not in pending:
                pending[client.id] = client
        return list(pending.values())

    async def sync_invoices(
        self, user_id: str, invoice_id: Optional[uuid.UUID] = None, sync_all: bool = False
    ) -> SyncResult:
        _check_selector(invoice_id, sync_all, "invoice_id")
        credentials = await self.oauth_flow.get_credentials(user_id)
        invoices = await self._select_invoices(user_id, invoice_id)

        # Clients go first so their invoices can reference them
        pending_clients = self._unsynced_clients(invoices)
        if pending_clients:
            logger.info(
                f"Syncing {len(pending_clients)} client(s) to {self.provider.display_name} before their invoices",
                extra={"provider": self.provider.name},
            )
            await self._push_clients(user_id, credentials, pending_clients)

        async def push(invoice: Invoice):
            if self.provider.skips_invoice(invoice):
                return SKIPPED
            contact_ref = self.provider.get_ref(invoice.client) if invoice.client else None
            if not contact_ref:
                raise SyncRowError(f"Client sync failed. No {self.provider.display_name} reference id.")
            return await self.provider.push_invoice(credentials, invoice, contact_ref)

        outcomes = await self._run(invoices, push)

        result = SyncResult(total=len(invoices))
        for invoice, outcome in zip(invoices, outcomes):
            self._apply_outcome(result, user_id, "invoice", invoice, invoice.invoice_number, outcome)
        await self.db.commit()

        logger.info(
            f"{self.provider.display_name} invoice sync complete: {result.synced} succeeded, {result.failed} failed",
            extra={"provider": self.provider.name},
        )
        return result
