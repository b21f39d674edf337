"""Account tools: get_user_info, update_user_info."""

from __future__ import annotations

from typing import Any

from devisly.domain.models import SUPPORTED_LANGUAGES, User
from devisly.infra.db import txn
from devisly.infra.repositories import users_repository
from devisly.infra.time import format_fr_date

from .base import ToolContext, ToolResult, clean_siret, log_execution, siret_error, strip_or_none

LANGUAGE_LABELS = {"fr": "Français", "tr": "Türkçe"}

SUBSCRIPTION_LABELS = {
    "pending": "En attente (non payé)",
    "active": "Actif",
    "past_due": "Paiement en retard",
    "canceled": "Annulé",
}

ONBOARDING_FIELDS = ("company_name", "siret", "address")


def missing_profile_fields(user: User) -> list[str]:
    return [name for name in ONBOARDING_FIELDS if not getattr(user, name)]


def get_user_info(ctx: ToolContext) -> ToolResult:
    user = ctx.user
    with txn() as cur:
        stats = users_repository.get_stats(cur, user_id=user.id)

    missing = missing_profile_fields(user)
    return ToolResult.ok(
        phone_number=user.phone_number,
        company_name=user.company_name,
        siret=user.siret,
        address=user.address,
        vat_number=user.vat_number,
        preferred_language=user.preferred_language,
        language_label=LANGUAGE_LABELS.get(user.preferred_language, user.preferred_language),
        subscription_status=user.subscription_status,
        subscription_label=SUBSCRIPTION_LABELS.get(user.subscription_status, user.subscription_status),
        can_create_documents=user.can_create_documents,
        onboarding_completed=user.onboarding_completed,
        needs_info=bool(missing),
        missing_fields=missing,
        stats={
            **stats,
            "member_since": format_fr_date(user.created_at),
            "last_activity": format_fr_date(user.last_activity_at) or None,
        },
    )


def update_user_info(
    ctx: ToolContext,
    *,
    company_name: Any = None,
    siret: Any = None,
    address: Any = None,
    vat_number: Any = None,
    preferred_language: Any = None,
) -> ToolResult:
    updates: dict[str, Any] = {
        "company_name": strip_or_none(company_name),
        "siret": clean_siret(siret),
        "address": strip_or_none(address),
        "vat_number": (strip_or_none(vat_number) or "").upper() or None,
        "preferred_language": strip_or_none(preferred_language),
    }
    updates = {name: value for name, value in updates.items() if value}
    if not updates:
        return ToolResult.failure("Aucune information à mettre à jour")

    invalid = siret_error(updates.get("siret"))
    if invalid:
        return invalid
    language = updates.get("preferred_language")
    if language is not None and language not in SUPPORTED_LANGUAGES:
        return ToolResult.failure(
            "Langue non supportée. Utilisez 'fr' (français) ou 'tr' (turc)",
            field="preferred_language",
        )

    changed = [name for name, value in updates.items() if getattr(ctx.user, name) != value]

    with txn() as cur:
        user = users_repository.update_profile(cur, user_id=ctx.user.id, fields=updates)
        if not user.onboarding_completed and not missing_profile_fields(user):
            users_repository.mark_onboarding_completed(cur, user_id=user.id)
            user = users_repository.get_user(cur, user.id) or user

    ctx.user = user
    log_execution(ctx, "UpdateUserInfo", "user_info_updated", updated_fields=changed)
    return ToolResult.ok(
        updated_fields=changed,
        company_name=user.company_name,
        siret=user.siret,
        address=user.address,
        vat_number=user.vat_number,
        preferred_language=user.preferred_language,
        onboarding_completed=user.onboarding_completed,
        message=f"Informations mises à jour: {', '.join(changed)}",
    )
