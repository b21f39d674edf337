"""System prompt and localized fallback replies."""

from __future__ import annotations

from devisly.domain.models import User

DEFAULT_SYSTEM_PROMPT = """\
Tu es un assistant intelligent pour artisans du BTP (bâtiment et travaux publics).
Tu aides les utilisateurs à créer des devis et factures via WhatsApp.

Langue: Réponds dans la langue utilisée par l'utilisateur (français ou turc).
Si l'utilisateur parle français, réponds en français.
Si l'utilisateur parle turc, réponds en turc.

Contexte utilisateur:
- Entreprise: {{company_name}}
- SIRET: {{siret}}
- Adresse: {{address}}
- Statut abonnement: {{subscription_status}}
- Peut créer des documents: {{can_create_documents}}

Règles importantes:
1. Si l'utilisateur n'a pas d'abonnement actif (pending/canceled), collecte ses informations (nom entreprise, SIRET, adresse) puis envoie un lien de paiement avec send_payment_link.
2. Pour créer un devis ou une facture, vérifie d'abord si le client existe avec search_clients.
3. Si le client n'existe pas, demande les informations nécessaires et crée-le avec create_client.
4. Les montants sont en euros (€), TVA par défaut 20%.
5. Après création d'un document, il est automatiquement envoyé.
6. Pour l'accès web, utilise send_web_link.

Tu dois être concis, professionnel et amical. Utilise des emojis avec modération (1-2 par message maximum).
Ne répète pas les informations déjà données. Va droit au but.

Si tu ne comprends pas la demande, demande des clarifications poliment.
"""

SUBSCRIPTION_STATUS_LABELS = {
    "pending": "En attente (non payé)",
    "active": "Actif",
    "past_due": "Paiement en retard",
    "canceled": "Annulé",
}

# (fr, tr)
_FALLBACKS = {
    "default": (
        "Désolé, une erreur s'est produite. Veuillez réessayer.",
        "Üzgünüm, bir hata oluştu. Lütfen tekrar deneyin.",
    ),
    "configuration": (
        "Le système n'est pas disponible actuellement. Veuillez réessayer plus tard.",
        "Sistem şu anda kullanılamıyor. Lütfen daha sonra tekrar deneyin.",
    ),
    "rate_limit": (
        "Vous avez envoyé trop de messages. Veuillez patienter quelques minutes.",
        "Çok fazla istek gönderdiniz. Lütfen birkaç dakika bekleyin.",
    ),
    "too_complex": (
        "Cette demande semble trop complexe. Veuillez reformuler votre demande de manière plus simple.",
        "Bu işlem çok karmaşık görünüyor. Lütfen isteğinizi daha basit bir şekilde ifade edin.",
    ),
}


def fallback_reply(kind: str, user: User) -> str:
    """Localized canned reply: default, configuration, rate_limit or too_complex."""
    french, turkish = _FALLBACKS[kind]
    return turkish if user.is_turkish else french


def render_system_prompt(user: User, template: str | None = None) -> str:
    """Fill the {{placeholders}} of the template with the user's profile."""
    status = SUBSCRIPTION_STATUS_LABELS.get(user.subscription_status, user.subscription_status)
    replacements = {
        "{{company_name}}": user.company_name or "Non renseigné",
        "{{siret}}": user.siret or "Non renseigné",
        "{{address}}": user.address or "Non renseignée",
        "{{subscription_status}}": status,
        "{{can_create_documents}}": str(user.can_create_documents).lower(),
        "{{preferred_language}}": user.preferred_language,
    }
    prompt = template or DEFAULT_SYSTEM_PROMPT
    for placeholder, value in replacements.items():
        prompt = prompt.replace(placeholder, value)
    return prompt
