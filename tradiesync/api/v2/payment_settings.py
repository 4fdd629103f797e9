"""
Payment Settings API Endpoints

Bank details shown on invoices. They are encrypted field by field with the
token vault before storage and decrypted only for the owning user.
"""

import logging

from fastapi import APIRouter, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.api.deps import CurrentUser, DbSession, Limiter, Vault
from tradiesync.config import settings
from tradiesync.models.profile import DEFAULT_PAYMENT_TERMS, Profile
from tradiesync.schemas.payment_settings import PaymentSettingsResponse, PaymentSettingsUpdate
from tradiesync.security.token_vault import BANK_DETAIL_FIELDS, DecryptionError, TokenVault

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.user_id == user_id))
    return result.scalar_one_or_none()


def _to_response(profile: Profile | None, vault: TokenVault) -> PaymentSettingsResponse:
    if profile is None:
        return PaymentSettingsResponse()

    stored = {f"{name}_encrypted": getattr(profile, f"{name}_encrypted") for name in BANK_DETAIL_FIELDS}
    try:
        details = vault.decrypt_fields(stored)
    except DecryptionError:
        logger.error("Stored bank details could not be decrypted", extra={"profile_id": str(profile.id)})
        details = {}

    payment_terms = profile.payment_terms if profile.payment_terms is not None else DEFAULT_PAYMENT_TERMS
    return PaymentSettingsResponse(**details, payment_terms=payment_terms)


@router.get("", response_model=PaymentSettingsResponse)
async def get_payment_settings(
    db: DbSession,
    current_user: CurrentUser,
    vault: Vault,
) -> PaymentSettingsResponse:
    profile = await _get_profile(db, current_user.id)
    return _to_response(profile, vault)


@router.put("", response_model=PaymentSettingsResponse)
async def update_payment_settings(
    body: PaymentSettingsUpdate,
    response: Response,
    db: DbSession,
    current_user: CurrentUser,
    vault: Vault,
    limiter: Limiter,
) -> PaymentSettingsResponse:
    result = await limiter.enforce(
        db,
        current_user.id,
        "update-payment-settings",
        settings.PAYMENT_SETTINGS_RATE_LIMIT,
        settings.PAYMENT_SETTINGS_RATE_WINDOW,
    )

    profile = await _get_profile(db, current_user.id)
    if profile is None:
        profile = Profile(user_id=current_user.id, payment_terms=DEFAULT_PAYMENT_TERMS)
        db.add(profile)

    for column, ciphertext in vault.encrypt_fields(body.model_dump(exclude_none=True)).items():
        setattr(profile, column, ciphertext)
    if body.payment_terms is not None:
        profile.payment_terms = body.payment_terms

    await db.commit()
    logger.info("Payment settings updated")

    response.headers.update(limiter.headers(result, settings.PAYMENT_SETTINGS_RATE_LIMIT))
    return _to_response(profile, vault)
