"""
Optional Capabilities
=====================

Every optional collaborator (database driver, session store, SQL statement
directory, the template flavours) sits in one slot of a Capabilities
object. A slot holds:

- a provider object, already usable;
- an import reference "package.module:attribute", imported on first use;
- None, meaning the collaborator is not configured.

CapabilityLoader.load() is the only way the framework turns a slot into a
provider. Successful loads are memoized on the Capabilities object, so
they are shared by every Application using it; failures are retried.
"""

import importlib
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from appframe.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

DATABASE = "database"
SESSION = "session"
SQLDIR = "sqldir"
TEMPLATE = "template"
TEMPLATE_CACHE = "template.cache"
TEMPLATE_EMAIL = "template.email"
TEMPLATE_EMAIL_SMTP = "template.email.smtp"

KNOWN_CAPABILITIES = (
    DATABASE,
    SESSION,
    SQLDIR,
    TEMPLATE,
    TEMPLATE_CACHE,
    TEMPLATE_EMAIL,
    TEMPLATE_EMAIL_SMTP,
)

DEFAULT_PROVIDERS: Dict[str, Optional[str]] = {
    DATABASE: "appframe.infrastructure.database:driver",
    SESSION: "appframe.infrastructure.session:store",
    SQLDIR: "appframe.infrastructure.sqldir:directory",
    TEMPLATE: "appframe.infrastructure.templates:Template",
    TEMPLATE_CACHE: "appframe.infrastructure.templates:CacheTemplate",
    TEMPLATE_EMAIL: "appframe.infrastructure.templates:EmailTemplate",
    TEMPLATE_EMAIL_SMTP: "appframe.infrastructure.templates:SmtpEmailTemplate",
}


@dataclass
class Capabilities:
    """Provider slots, keyed by capability identifier."""

    slots: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_PROVIDERS))
    _loaded: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def empty(cls) -> "Capabilities":
        """No collaborator configured."""
        return cls(slots={name: None for name in KNOWN_CAPABILITIES})

    def configure(self, identifier: str, provider: Any) -> None:
        """Replace a slot; drops any memoized provider for it."""
        self.slots[identifier] = provider
        self._loaded.pop(identifier, None)

    def is_loaded(self, identifier: str) -> bool:
        return identifier in self._loaded

    def is_configured(self, identifier: str) -> bool:
        return self.slots.get(identifier) is not None

    def loaded(self, identifier: str) -> Optional[Any]:
        """The provider if it was already loaded, without loading it."""
        return self._loaded.get(identifier)

    def _remember(self, identifier: str, provider: Any) -> None:
        self._loaded[identifier] = provider


_capabilities: Capabilities | None = None


def get_capabilities() -> Capabilities:
    """Process-wide Capabilities with the default providers."""
    global _capabilities
    if _capabilities is None:
        _capabilities = Capabilities()
    return _capabilities


def resolve_reference(reference: str) -> Any:
    """Import "package.module:attribute" (or a bare module path)."""
    module_name, _, attribute = reference.partition(":")
    obj = importlib.import_module(module_name)
    for part in filter(None, attribute.split(".")):
        obj = getattr(obj, part)
    return obj


class CapabilityLoader:
    """
    Loads capability slots and records why a load failed.

    `load_error` is cleared at the start of every load() call and set
    again only when that call fails.
    """

    def __init__(self, capabilities: Capabilities):
        self.capabilities = capabilities
        self.load_error: Optional[str] = None

    def load(self, identifier: str) -> bool:
        self.load_error = None

        if self.capabilities.is_loaded(identifier):
            return True

        if identifier not in self.capabilities.slots:
            self.load_error = f"unknown capability '{identifier}'"
            return False

        provider = self.capabilities.slots[identifier]
        if provider is None:
            self.load_error = f"capability '{identifier}' is not configured"
            return False

        if isinstance(provider, str):
            try:
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore")
                    provider = resolve_reference(provider)
            except Exception as e:
                self.load_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Capability load failed",
                    extra={"capability": identifier, "error": self.load_error}
                )
                return False

        self.capabilities._remember(identifier, provider)
        logger.debug("Capability loaded", extra={"capability": identifier})
        return True

    def get(self, identifier: str) -> Optional[Any]:
        """Load and return the provider, or None on failure."""
        if not self.load(identifier):
            return None
        return self.capabilities.loaded(identifier)
