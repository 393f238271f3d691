"""
Hierarchie d'exceptions du domaine suivi / Tracking domain exception hierarchy.

Les services levent ces erreurs, les routes API les traduisent en HTTPException.
Services raise these errors, API routes translate them into HTTPException.
"""


class TrackingError(Exception):
    """Base de toutes les erreurs du suivi / Base for all tracking errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DeliveryNotFoundError(TrackingError):
    """Livraison inconnue / Unknown delivery."""


class LocationValidationError(TrackingError):
    """Position malformee ou champ obligatoire manquant / Malformed location or missing field."""


class StaleSampleError(TrackingError):
    """Position plus ancienne que la derniere stockee / Sample older than the last stored one."""


class IllegalTransitionError(TrackingError):
    """Transition hors du graphe autorise / Transition outside the allowed edge set."""

    def __init__(self, from_status, to_status, details: dict | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Illegal transition {getattr(from_status, 'value', from_status)} -> "
            f"{getattr(to_status, 'value', to_status)}",
            details,
        )


class EstimatorError(TrackingError):
    """Echec d'un modele ETA (jamais fatal) / ETA model failure (never fatal)."""


class ExternalServiceError(TrackingError):
    """Echec d'un service externe (routage, meteo, notification) / External service failure."""


class StorageUnavailableError(TrackingError):
    """Stockage indisponible, le client doit reessayer / Storage unavailable, client should retry."""

    retryable = True
