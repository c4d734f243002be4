"""
Application
===========

One Application per request. It owns the configuration and the request
adapter, and acquires everything else lazily:

- the database handle, shared process-wide through the HandleRegistry
  keyed by connection string and username;
- the session, built once per instance from the session store;
- template objects of every flavour, prefilled with the configuration.

Optional collaborators are only ever obtained through
load_optional_capability(). Every failure the client should see goes
through report_fatal_error(), which writes an error page and ends the
request by raising RequestTerminated.
"""

from typing import Any, Callable, Dict, Mapping, NoReturn, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from markupsafe import Markup
from sqlalchemy.exc import SQLAlchemyError

from appframe.config import AppConfig, Settings, get_settings
from appframe.core import (
    ApplicationException,
    DatabaseConnectionException,
    DependencyLoadException,
    FatalErrorLoop,
    RequestTerminated,
    TemplateException,
)
from appframe.infrastructure.capabilities import (
    DATABASE,
    SESSION,
    SQLDIR,
    TEMPLATE,
    TEMPLATE_CACHE,
    TEMPLATE_EMAIL,
    TEMPLATE_EMAIL_SMTP,
    Capabilities,
    CapabilityLoader,
    get_capabilities,
)
from appframe.infrastructure.database import (
    DatabaseDescriptor,
    DatabaseDriver,
    HandleRegistry,
    get_handle_registry,
)
from appframe.infrastructure.request import EnvironRequestAdapter, RequestAdapter
from appframe.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

TEMPLATE_FLAVOURS = (TEMPLATE, TEMPLATE_CACHE, TEMPLATE_EMAIL, TEMPLATE_EMAIL_SMTP)

# Collaborators told about every newly opened handle
HANDLE_CONSUMERS = (SESSION, SQLDIR, TEMPLATE_CACHE)

SelectionPolicy = Callable[
    [Mapping[str, DatabaseDescriptor], Optional[RequestAdapter]],
    Optional[DatabaseDescriptor],
]
AccessPolicy = Callable[["Application"], bool]


def first_label_policy(
    options: Mapping[str, DatabaseDescriptor],
    request: Optional[RequestAdapter] = None,
) -> Optional[DatabaseDescriptor]:
    """Pick the descriptor with the alphabetically first label."""
    if not options:
        return None
    return options[min(options)]


def allow_all(app: "Application") -> bool:
    return True


class Application:
    """
    Lazy resource manager for a single request.

    Args:
        config: AppConfig or plain mapping of configuration keys
        request: request adapter; built from os.environ when omitted
        handle: caller-managed database handle, never put in the registry
        session: an already constructed session
        registry: process handle registry (default: the process singleton)
        capabilities: provider slots (default: the process defaults)
        selection_policy: picks one of several named database options
        authentication_policy: decides whether the request may proceed
        host_policy: decides whether the requesting host is allowed
        settings: process settings (default: get_settings())
    """

    def __init__(
        self,
        config: Union[AppConfig, Mapping[str, Any], None] = None,
        request: Optional[RequestAdapter] = None,
        handle: Any = None,
        session: Any = None,
        *,
        registry: Optional[HandleRegistry] = None,
        capabilities: Optional[Capabilities] = None,
        selection_policy: Optional[SelectionPolicy] = None,
        authentication_policy: Optional[AccessPolicy] = None,
        host_policy: Optional[AccessPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        if not isinstance(config, AppConfig):
            config = AppConfig(**(config or {}))
        self.config = config
        self.request = request if request is not None else EnvironRequestAdapter()
        self.handle = handle
        self.session = session
        self.registry = registry if registry is not None else get_handle_registry()
        self.capabilities = capabilities if capabilities is not None else get_capabilities()
        self.loader = CapabilityLoader(self.capabilities)
        self.settings = settings or get_settings()
        self.selection_policy = selection_policy or first_label_policy
        self.authentication_policy = authentication_policy or allow_all
        self.host_policy = host_policy or allow_all
        self.database_options: Dict[str, Dict[str, DatabaseDescriptor]] = {}
        self.in_error = False

        self.initialize()
        if self.handle is not None:
            self._apply_handle()

    def initialize(self) -> None:
        """Fill request-derived config defaults and point the SQL directory at `sqldir`."""
        url = self.request.url()
        if not self.config.myURL:
            self.config.myURL = url
        if not self.config.cgiurl:
            parts = urlsplit(url)
            base = parts.path[: parts.path.rfind("/") + 1] or "/"
            self.config.cgiurl = urlunsplit((parts.scheme, parts.netloc, base, "", ""))
        if not self.config.cgidir:
            self.config.cgidir = self.request.script_dir()

        if self.config.sqldir and self.capabilities.is_configured(SQLDIR):
            if self.load_optional_capability(SQLDIR):
                self.capabilities.loaded(SQLDIR).set_directory(self.config.sqldir)

    # ========== Accessors ==========

    def get_config(self) -> AppConfig:
        return self.config

    def get_request(self) -> RequestAdapter:
        return self.request

    @property
    def load_error(self) -> Optional[str]:
        """Why the last load_optional_capability() call failed, if it did."""
        return self.loader.load_error

    def authenticate(self) -> bool:
        """True when the request may proceed. Both policies allow everything by default."""
        return self.is_allowed_host() and bool(self.authentication_policy(self))

    def is_allowed_host(self) -> bool:
        return bool(self.host_policy(self))

    def header(self, **headers: Any) -> str:
        """
        Compose the response header, including the session cookie.

        Returns "" once the header has been emitted.
        """
        cookies = list(headers.pop("cookies", ()))
        if self.session is not None:
            cookies.append(self.session.cookie())
        return self.request.header(cookies=cookies, **headers)

    # ========== Capabilities ==========

    def load_optional_capability(self, identifier: str) -> bool:
        """Load an optional collaborator; False (with load_error set) on failure."""
        return self.loader.load(identifier)

    def _require(self, identifier: str) -> Any:
        if not self.load_optional_capability(identifier):
            self._fail(DependencyLoadException(identifier, self.load_error or ""))
        return self.capabilities.loaded(identifier)

    # ========== Database ==========

    def register_database_option(
        self,
        name: str,
        label: str,
        dsn: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        """Register one way of reaching database `name`. Re-registering a label replaces it."""
        self.database_options.setdefault(name, {})[label] = DatabaseDescriptor(dsn, username, password)

    def select_among_options(
        self, options: Mapping[str, DatabaseDescriptor]
    ) -> Optional[DatabaseDescriptor]:
        return self.selection_policy(options, self.request)

    def _descriptor_from_config(self) -> Optional[DatabaseDescriptor]:
        cfg = self.config
        dsn = cfg.dbistr
        if not dsn:
            if not cfg.dbname:
                return None
            dsn = f"{self.settings.default_db_driver}://{cfg.dbhost or ''}/{cfg.dbname}"
        return DatabaseDescriptor(dsn, cfg.dbusername, cfg.dbpassword or "")

    def acquire_database_handle(self, name: Optional[str] = None) -> Any:
        """
        Return the database handle, opening it on first use.

        With `name`, the selection policy picks among the options registered
        for it; otherwise, or when it picks nothing, the flat config is used.
        Returns None when no database is configured.
        """
        if self.handle is not None:
            return self.handle

        descriptor = None
        if name is not None:
            descriptor = self.select_among_options(self.database_options.get(name, {}))
        if descriptor is None:
            descriptor = self._descriptor_from_config()
        if descriptor is None:
            return None

        key = descriptor.cache_key
        cached = self.registry.get(key)
        if cached is not None:
            logger.debug("Reusing database handle", extra={"cache_key": key})
            self.handle = cached
            return cached

        driver: DatabaseDriver = self._require(DATABASE)
        try:
            with log_latency(logger, "database_connect", dsn=descriptor.dsn):
                handle = driver.connect(
                    descriptor.dsn,
                    descriptor.username,
                    descriptor.password or "",
                    autocommit=False,
                    raise_on_error=True,
                )
        except Exception as e:
            self._fail(
                DatabaseConnectionException(
                    f"Failed to connect to the database: {e or type(e).__name__}"
                ),
                cause=e,
            )

        self.handle = handle
        self._apply_handle()
        self.registry.put(key, handle)
        return handle

    def _apply_handle(self) -> None:
        # Only collaborators that are already loaded; never load one here.
        for identifier in HANDLE_CONSUMERS:
            provider = self.capabilities.loaded(identifier)
            if provider is not None and hasattr(provider, "set_handle"):
                provider.set_handle(self.handle)

    # ========== Session ==========

    def acquire_session(self) -> Any:
        """
        Return the session, creating it on first use.

        Must be called before header() is emitted, since the session cookie
        goes out with the header.
        """
        if self.session is None:
            store = self._require(SESSION)
            handle = self.acquire_database_handle()
            if handle is None:
                self._fail(DatabaseConnectionException("Sessions need a database, but none is configured"))

            if self.config.cookiename:
                store.set_cookie_name(self.config.cookiename)
            if self.config.sessiontable:
                store.set_table_name(self.config.sessiontable)
            if self.config.sessiontime:
                store.set_expiration(self.config.sessiontime)
            store.set_handle(handle)
            try:
                self.session = store.new(self.request)
            except SQLAlchemyError as e:
                self._fail(DatabaseConnectionException(f"Failed to start the session: {e}"), cause=e)
        return self.session

    # ========== Templates ==========

    def template_path(self, file: str) -> str:
        base = self.config.templatedir or self.config.templatepath or ""
        if base:
            base = base.rstrip("/") + "/"
        return base + file

    def acquire_template(
        self,
        kind: str,
        file: str,
        cache_key: Optional[str] = None,
        **params: Any,
    ) -> Any:
        """Build, locate and prefill a template of the given flavour."""
        if kind not in TEMPLATE_FLAVOURS:
            raise ValueError(f"Unknown template flavour: {kind}")

        factory = self._require(kind)
        if cache_key is not None:
            handle = self.acquire_database_handle()
            if handle is None:
                self._fail(DatabaseConnectionException("Cached templates need a database, but none is configured"))
            template = factory(cache_key, handle)
        else:
            template = factory()

        if not template.set_filename(self.template_path(file)):
            self._fail(TemplateException(f"Internal error: problem locating the web page template {file}"))
        self.prefill_template(template, **params)
        return template

    def get_template(self, file: str, **params: Any) -> Any:
        return self.acquire_template(TEMPLATE, file, **params)

    def get_template_cache(self, cache_key: str, file: str, **params: Any) -> Any:
        return self.acquire_template(TEMPLATE_CACHE, file, cache_key, **params)

    def get_email_template(self, file: str, **params: Any) -> Any:
        """Email template; sent through SMTP when `mailhost` is configured."""
        kind = TEMPLATE_EMAIL
        if self.config.mailhost:
            kind = TEMPLATE_EMAIL_SMTP
            self._require(kind).set_host(self.config.mailhost)
        return self.acquire_template(kind, file, **params)

    def prefill_template(self, template: Any, **params: Any) -> Any:
        """
        Set the standard template parameters. Later entries override earlier ones:

        1. every configuration key
        2. myURL: the current request URL, and persistent_process: whether
           this process outlives the request
        3. the keyword arguments given here
        """
        ok = template.set_params(
            self.config.to_params(),
            {"myURL": self.request.url(), "persistent_process": self.request.persistent},
            params,
        )
        if not ok:
            self._fail(TemplateException("Internal error: problem setting template parameters"))
        return template

    # ========== Errors ==========

    def _fail(self, exc: ApplicationException, cause: Optional[BaseException] = None) -> NoReturn:
        if cause is not None:
            exc.__cause__ = cause
        if self.in_error:
            # Failing while rendering the error page; report_fatal_error falls back.
            raise exc
        self.report_fatal_error(exc.message, cause=exc)

    def report_fatal_error(self, message: str, cause: Optional[BaseException] = None) -> NoReturn:
        """
        Show `message` to the client and end the request.

        The message is HTML-escaped and newlines become <br> tags. When the
        `error_template` config key is set, that template renders it as
        `error`; otherwise the bare message is written. Always raises
        RequestTerminated; raises FatalErrorLoop when entered again while a
        report is in progress.
        """
        escaped = self.request.escape_html(str(message)).replace("\n", "<br>\n")

        if self.in_error:
            logger.critical("Fatal error reported while reporting a fatal error", extra={"error": message})
            raise FatalErrorLoop("Error function called too many times")

        if isinstance(cause, DependencyLoadException):
            kind = "dependency"
        elif cause is not None:
            kind = "operation"
        else:
            kind = "fatal"
        logger.error("Fatal error", extra={"error": message, "kind": kind})

        self.in_error = True
        try:
            self.request.write(self.header(status=500))
            page = None
            if self.config.error_template:
                try:
                    page = self.get_template(self.config.error_template, error=Markup(escaped)).render()
                except ApplicationException as e:
                    logger.warning("Error template unavailable", extra={"error": e.message})
            if page is None:
                page = f"Internal error: {escaped}<br>\n"
            self.request.write(page)
        finally:
            self.in_error = False

        raise RequestTerminated(message, body=page, kind=kind) from cause


def run_script(handler: Callable[[Application], Any], config: Any = None, **kwargs: Any) -> int:
    """
    CGI entry point: run `handler` against an Application for this request.

    Returns 0, or 1 when the request ended in a reported fatal error.
    """
    app = Application(config, **kwargs)
    try:
        handler(app)
    except RequestTerminated:
        return 1
    return 0
