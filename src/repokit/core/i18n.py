"""Request-scoped message translation.

A translator is bound to the current context (usually by the request
middleware from the ``Accept-Language`` header). Code that produces
user-facing messages asks for the bound translator and falls back to its own
English default when none is bound, e.g. in scripts or background jobs.
"""

from contextvars import ContextVar, Token
from typing import Any

from repokit.core.config import settings
from repokit.core.logging import get_logger

logger = get_logger(__name__)

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "errors.invalid_sort_key": "Invalid sort key: {key}. Must be one of: {available}",
        "errors.invalid_sort_direction": 'Invalid direction. Must be "{asc}" or "{desc}".',
        "errors.unknown_field": "Unknown field: {field}. Must be one of: {available}",
        "errors.invalid_filter_operator": "Invalid filter operator: {operator}. Must be one of: {available}",
        "errors.invalid_between_value": "Operator {operator} on {field} expects a pair of values",
        "errors.invalid_pagination": "{name} must be a positive integer",
        "errors.invalid_chunk_size": "Chunk size must be a positive integer",
        "errors.unknown_scope": "Unknown scope: {scope}. Must be one of: {available}",
        "errors.not_found": "{model} with {field} {value} not found",
        "errors.database_not_provided": "Database instance not provided",
        "errors.soft_delete_unsupported": "{model} does not support soft deletes",
    },
    "pt-BR": {
        "errors.invalid_sort_key": "Chave de ordenação inválida: {key}. Deve ser uma de: {available}",
        "errors.invalid_sort_direction": 'Direção inválida. Deve ser "{asc}" ou "{desc}".',
        "errors.unknown_field": "Campo desconhecido: {field}. Deve ser um de: {available}",
        "errors.invalid_filter_operator": "Operador de filtro inválido: {operator}. Deve ser um de: {available}",
        "errors.invalid_between_value": "O operador {operator} em {field} espera um par de valores",
        "errors.invalid_pagination": "{name} deve ser um inteiro positivo",
        "errors.invalid_chunk_size": "O tamanho do lote deve ser um inteiro positivo",
        "errors.unknown_scope": "Escopo desconhecido: {scope}. Deve ser um de: {available}",
        "errors.not_found": "{model} com {field} {value} não encontrado",
        "errors.database_not_provided": "Instância de banco de dados não fornecida",
        "errors.soft_delete_unsupported": "{model} não suporta exclusão lógica",
    },
}


class Translator:
    """Looks up message keys for one locale, falling back to the default locale.

    Args:
        locale: Locale tag, e.g. "en" or "pt-BR"
        catalogs: Mapping of locale to message catalog
        fallback_locale: Locale used for keys missing from ``locale``
    """

    def __init__(
        self,
        locale: str,
        catalogs: dict[str, dict[str, str]] | None = None,
        fallback_locale: str | None = None,
    ) -> None:
        self.locale = locale
        self._catalogs = catalogs if catalogs is not None else MESSAGES
        self._fallback_locale = fallback_locale or settings.default_locale

    def t(self, key: str, /, **params: Any) -> str:
        """Translate ``key`` and interpolate ``params``.

        Unknown keys are returned unchanged so a missing translation never
        hides the underlying error.
        """
        template = self._catalogs.get(self.locale, {}).get(key)
        if template is None:
            template = self._catalogs.get(self._fallback_locale, {}).get(key)
        if template is None:
            logger.warning("Missing translation", key=key, locale=self.locale)
            return key
        return template.format(**params)


translator_var: ContextVar[Translator | None] = ContextVar("translator", default=None)


def get_translator() -> Translator | None:
    """Return the translator bound to the current context, if any."""
    return translator_var.get()


def bind_translator(translator: Translator) -> Token[Translator | None]:
    """Bind ``translator`` to the current context; reset with the returned token."""
    return translator_var.set(translator)


def reset_translator(token: Token[Translator | None]) -> None:
    translator_var.reset(token)


def negotiate_locale(accept_language: str | None, available: list[str] | None = None) -> str:
    """Pick the best supported locale for an ``Accept-Language`` header value.

    Exact tags win over language-only matches ("pt" matches "pt-BR"); quality
    values are honoured. Returns the default locale when nothing matches.
    """
    supported = available if available is not None else list(MESSAGES)
    if not accept_language:
        return settings.default_locale

    candidates: list[tuple[float, str]] = []
    for part in accept_language.split(","):
        piece = part.strip()
        if not piece:
            continue
        tag, _, params = piece.partition(";")
        quality = 1.0
        if params.strip().startswith("q="):
            try:
                quality = float(params.strip()[2:])
            except ValueError:
                quality = 0.0
        candidates.append((quality, tag.strip()))

    for _, tag in sorted(candidates, key=lambda item: item[0], reverse=True):
        lowered = tag.lower()
        for locale in supported:
            if locale.lower() == lowered:
                return locale
        language = lowered.split("-", 1)[0]
        for locale in supported:
            if locale.lower().split("-", 1)[0] == language:
                return locale

    return settings.default_locale


def translate(key: str, default: str, /, **params: Any) -> str:
    """Translate through the bound translator, or format ``default`` when unbound."""
    translator = get_translator()
    if translator is None:
        return default.format(**params)
    return translator.t(key, **params)
