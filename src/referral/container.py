"""
Composition root for the referral resolver.

:class:`ReferralContainer` builds the store and parser from settings on
first access and owns the single :class:`AttributionResolver` for the
process. Whoever calls ``initiate()`` and every reader that calls
``resolve()`` receive that same instance from the container; there is no
module-level global.

Usage::

    from referral.container import ReferralContainer

    container = ReferralContainer()
    resolver = container.resolver(client)   # built once
    resolver.initiate()

    # elsewhere, same container
    outcome = await container.resolver().resolve()
"""

from __future__ import annotations

from referral.core.errors import ConfigError
from referral.core.logging import get_logger
from referral.core.protocols import AttributionParser, AttributionStore, ServiceClient
from referral.core.settings import ReferralSettings, StoreBackend, get_settings
from referral.parser import QueryParamReferrerParser
from referral.resolver import AttributionResolver
from referral.store import InMemoryReferrerStore, JsonFileReferrerStore

logger = get_logger(__name__)


class ReferralContainer:
    """Lazy-initialised dependency container.

    Explicit ``store`` / ``parser`` arguments take precedence over the ones
    derived from settings.
    """

    def __init__(
        self,
        settings: ReferralSettings | None = None,
        *,
        store: AttributionStore | None = None,
        parser: AttributionParser | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._parser = parser
        self._resolver: AttributionResolver | None = None
        self._client: ServiceClient | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> ReferralSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def store(self) -> AttributionStore:
        if self._store is None:
            if self.settings.store_backend is StoreBackend.MEMORY:
                self._store = InMemoryReferrerStore()
            else:
                self._store = JsonFileReferrerStore(self.settings.store_path)
        return self._store

    @property
    def parser(self) -> AttributionParser:
        if self._parser is None:
            self._parser = QueryParamReferrerParser(
                campaign_param=self.settings.campaign_param,
                campaign_prefixes=self.settings.campaign_prefixes,
            )
        return self._parser

    def resolver(self, client: ServiceClient | None = None) -> AttributionResolver:
        """Return the process resolver, building it on the first call.

        Raises:
            ConfigError: If no resolver exists yet and no client is given,
                or if a different client is offered after construction.
        """
        if self._resolver is not None:
            if client is not None and client is not self._client:
                raise ConfigError(
                    "Resolver already built with a different service client"
                )
            return self._resolver

        if client is None:
            raise ConfigError("A service client is required to build the resolver")

        self._client = client
        self._resolver = AttributionResolver(
            self.store,
            self.parser,
            client,
            persist_not_found=self.settings.persist_not_found,
        )
        logger.debug(
            "referrer_resolver_built",
            store=type(self.store).__name__,
            persist_not_found=self.settings.persist_not_found,
        )
        return self._resolver
