"""
User-facing message catalog.

Messages are short and non-technical. Internal failure detail never ends up
here; it goes to the operator logs.
"""

from typing import Dict, Optional

SUPPORTED_LOCALES = ("tr", "en")

MESSAGES: Dict[str, Dict[str, str]] = {
    "tr": {
        "limit.no_entitlement": "Bu özellik mevcut paketinizde bulunmamaktadır.",
        "limit.unlimited": "Sınırsız kullanım hakkınız var.",
        "limit.remaining": "{remaining} adet daha ekleyebilirsiniz.",
        "limit.exceeded": "Limit aşıldı. Paketinizi yükselterek daha fazla ekleyebilirsiniz.",
        "limit.bulk_shortfall": "{requested} adet eklemek istiyorsunuz ancak sadece {remaining} adet ekleyebilirsiniz.",
        "service_request.invalid_body": "Geçersiz istek formatı",
        "service_request.table_required": "Masa bilgisi (tableId) zorunludur",
        "service_request.invalid_table_id": "Geçersiz masa kimlik formatı",
        "service_request.invalid_request_type": "Geçersiz istek türü",
        "service_request.table_not_found": "Masa bulunamadı",
        "service_request.table_inactive": "Bu masa aktif değil",
        "service_request.wait": "Lütfen {seconds} saniye bekleyin",
        "service_request.failed": "Servis isteği oluşturulamadı. Lütfen tekrar deneyin.",
        "generic.unavailable": "Hizmet geçici olarak kullanılamıyor. Lütfen tekrar deneyin.",
    },
    "en": {
        "limit.no_entitlement": "This feature is not included in your current plan.",
        "limit.unlimited": "You have unlimited usage.",
        "limit.remaining": "You can add {remaining} more.",
        "limit.exceeded": "Limit reached. Upgrade your plan to add more.",
        "limit.bulk_shortfall": "You requested {requested} but only {remaining} can be added.",
        "service_request.invalid_body": "Invalid request format",
        "service_request.table_required": "Table identifier (tableId) is required",
        "service_request.invalid_table_id": "Invalid table identifier format",
        "service_request.invalid_request_type": "Invalid request type",
        "service_request.table_not_found": "Table not found",
        "service_request.table_inactive": "This table is not active",
        "service_request.wait": "Please wait {seconds} seconds",
        "service_request.failed": "The service request could not be created. Please try again.",
        "generic.unavailable": "Service temporarily unavailable. Please try again.",
    },
}


class MessageCatalog:
    """Renders localized messages by key."""

    def __init__(self, default_locale: str = "tr"):
        self.default_locale = default_locale if default_locale in MESSAGES else "tr"

    def resolve_locale(self, locale: Optional[str]) -> str:
        """Pick a supported locale from a tag such as ``en-US``; fall back to the default."""
        if locale:
            primary = locale.split(",")[0].split(";")[0].split("-")[0].strip().lower()
            if primary in MESSAGES:
                return primary
        return self.default_locale

    def render(self, key: str, locale: Optional[str] = None, **params) -> str:
        templates = MESSAGES[self.resolve_locale(locale)]
        return templates[key].format(**params)
