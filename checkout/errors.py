"""
Erreurs métier du checkout.
Chaque erreur porte son code HTTP; le handler enregistré par
checkout.app_setup.exception_handlers les rend en JSON {"error", "code"}.
"""


class CheckoutError(Exception):
    status_code = 500
    code = "checkout_error"
    default_detail = "Erreur interne"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidRequest(CheckoutError):
    status_code = 400
    code = "invalid_request"
    default_detail = "Requête invalide"


class NoActiveAccount(CheckoutError):
    status_code = 500
    code = "no_active_account"
    default_detail = "Aucun compte Stripe actif configuré"


class SessionNotFound(CheckoutError):
    status_code = 404
    code = "session_not_found"
    default_detail = "Aucun panier trouvé pour cette session"


class InvalidAmount(CheckoutError):
    status_code = 400
    code = "invalid_amount"
    default_detail = "Montant invalide"


class InvalidSignature(CheckoutError):
    status_code = 400
    code = "invalid_signature"
    default_detail = "Signature webhook invalide"


class NoWebhookSecretsConfigured(CheckoutError):
    status_code = 500
    code = "no_webhook_secrets"
    default_detail = "Aucun secret webhook configuré"


class OrderCreationFailed(CheckoutError):
    status_code = 502
    code = "order_creation_failed"
    default_detail = "Création de la commande Shopify échouée"


class OrderInProgress(CheckoutError):
    """Claim posé par une autre livraison, commande pas encore enregistrée: réessayer plus tard."""
    status_code = 409
    code = "order_in_progress"
    default_detail = "Commande en cours de création"


class UpstreamUnavailable(CheckoutError):
    status_code = 502
    code = "upstream_unavailable"
    default_detail = "Service externe indisponible"


class PaymentDeclined(CheckoutError):
    status_code = 402
    code = "payment_declined"
    default_detail = "Paiement refusé"


class AlreadyProcessed(CheckoutError):
    """No-op idempotent: la commande existe déjà (ou est en cours) pour cette session."""
    status_code = 200
    code = "already_processed"
    default_detail = "Commande déjà créée"
