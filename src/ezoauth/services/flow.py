"""Authorization code flow orchestration.

Drives one authorization attempt from URL construction through the callback
exchange, persisting the attempt in a StorageProvider so that a different
process can finish it after the redirect.

Lifecycle of an attempt:
    PENDING --get_tokens_from_code_grant ok--> COMPLETED
    PENDING --get_tokens_from_code_grant error--> FAILED
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Mapping
from typing import Any

from ezoauth.models.config import ClientConfiguration
from ezoauth.models.errors import (
    ClientResponseError,
    FlowStateError,
    InvalidStateError,
    OAuthClientError,
    StateNotFoundError,
)
from ezoauth.models.flow import FlowPhase
from ezoauth.models.state import FlowState
from ezoauth.models.tokens import TokenResponse
from ezoauth.services.security import ResolvingUrlSafetyChecker, UrlSafetyChecker
from ezoauth.services.tokens import TokenEndpointClient
from ezoauth.storage.base import StorageProvider

logger = logging.getLogger(__name__)

STATE_KEY = "core_oauth_state"
ENVIRONMENT_VARIABLE = "EZOAUTH_ENV"


def is_hardened_environment() -> bool:
    """Whether ``EZOAUTH_ENV`` asks for production hardening."""
    return os.environ.get(ENVIRONMENT_VARIABLE, "").lower() == "production"


class FlowOrchestrator:
    """One authorization code attempt for one client configuration.

    The configuration is shared and never mutated here; the FlowState belongs
    to this attempt alone. A storage key is only written by
    ``create_authorization_url`` and only removed by ``discard``.
    """

    def __init__(
        self,
        config: ClientConfiguration,
        flow_state: FlowState,
        storage: StorageProvider | None = None,
        *,
        token_client: TokenEndpointClient | None = None,
        url_checker: UrlSafetyChecker | None = None,
        hardened: bool | None = None,
        namespace: str = STATE_KEY,
    ):
        """Initialize the orchestrator.

        Args:
            config: Client configuration to run the flow against
            flow_state: State, nonce and PKCE material for this attempt
            storage: Where to persist the attempt across the redirect
            token_client: Token endpoint client (one is created if omitted)
            url_checker: Redirect URI safety check used when hardened
            hardened: Force hardening on or off; defaults to ``EZOAUTH_ENV``
            namespace: Prefix of the storage key
        """
        self.config = config
        self.flow_state = flow_state
        self.storage = storage
        self.namespace = namespace
        self.hardened = is_hardened_environment() if hardened is None else hardened
        self.phase = FlowPhase.PENDING
        self._token_client = token_client or TokenEndpointClient()
        self._url_checker = url_checker or ResolvingUrlSafetyChecker()

    @property
    def storage_key(self) -> str:
        return f"{self.namespace}:{self.flow_state.state}"

    def _require_pending(self) -> None:
        if self.phase is not FlowPhase.PENDING:
            raise FlowStateError(
                f"Authorization attempt already {self.phase.value}"
            )

    async def create_authorization_url(self, scope_separator: str = " ") -> str:
        """Build the authorization URL and persist the attempt.

        Args:
            scope_separator: Separator used to join scopes

        Returns:
            The URL the user agent should be sent to

        Raises:
            UnsafeUrlError: If hardened and the redirect URI is unsafe
            FlowStateError: If the attempt already finished
        """
        self._require_pending()

        if self.hardened:
            await self._url_checker.check(self.config.redirect_uri)

        params = {
            "redirect_uri": self.config.redirect_uri,
            "scope": scope_separator.join(self.config.scopes),
            "code_challenge": self.flow_state.code_challenge,
            "state": self.flow_state.state,
            "code_challenge_method": FlowState.CODE_CHALLENGE_METHOD,
            **self.config.additional_params,
        }

        if not self.config.supports_pkce:
            params["nonce"] = self.flow_state.nonce

        if self.storage is not None:
            await self.storage.save(self.storage_key, self._serialize())
            logger.debug(f"Persisted authorization attempt under {self.storage_key}")

        return self._token_client.build_authorization_url(self.config, params)

    async def get_tokens_from_code_grant(self, callback_url: str) -> TokenResponse:
        """Validate the callback and exchange the authorization code.

        Raises:
            FlowStateError: If the attempt already finished
            OAuthClientError: If the provider rejected the token request
            StateValidationError: If the callback state is missing or wrong
            AuthorizationError: If the provider reported an authorization error
        """
        self._require_pending()

        try:
            tokens = await self._token_client.authorization_code_grant(
                self.config,
                callback_url,
                expected_state=self.flow_state.state,
                pkce_code_verifier=self.flow_state.code_verifier,
                # The nonce is only sent to servers without PKCE support
                expected_nonce=(
                    None if self.config.supports_pkce else self.flow_state.nonce
                ),
            )
        except ClientResponseError as e:
            self.phase = FlowPhase.FAILED
            raise OAuthClientError(str(e), cause=e, reason=_error_body(e)) from e
        except Exception:
            self.phase = FlowPhase.FAILED
            raise

        self.phase = FlowPhase.COMPLETED
        logger.info(f"Authorization attempt {self.storage_key} completed")
        return tokens

    async def refresh_token(
        self, refresh_token: str, config: ClientConfiguration | None = None
    ) -> TokenResponse:
        config = config or self.config
        return await self._token_client.refresh_token_grant(
            config, refresh_token, config.additional_params
        )

    async def revoke_token(
        self, token: str, config: ClientConfiguration | None = None
    ) -> None:
        config = config or self.config
        await self._token_client.revoke_token(config, token, config.additional_params)

    async def discard(self, storage: StorageProvider | None = None) -> None:
        """Delete the persisted attempt, if any."""
        storage = storage or self.storage
        if storage is not None:
            await storage.delete(self.storage_key)

    @classmethod
    async def resume_from_storage(
        cls,
        storage: StorageProvider,
        key: str,
        config_factory: Callable[[Mapping[str, Any]], ClientConfiguration]
        | type[ClientConfiguration] = ClientConfiguration,
        state_factory: Callable[[Mapping[str, Any]], FlowState]
        | type[FlowState] = FlowState,
        namespace: str = STATE_KEY,
        **kwargs: Any,
    ) -> FlowOrchestrator:
        """Restore an attempt persisted by ``create_authorization_url``.

        Args:
            storage: Storage the attempt was saved to
            key: The ``state`` value of the attempt, as received in the callback
            config_factory: Class (``from_dict``) or callable rebuilding the
                configuration, e.g. a provider-specific subclass
            state_factory: Class (``from_dict``) or callable rebuilding the state
            namespace: Prefix the attempt was stored under
            **kwargs: Passed to the orchestrator constructor

        Raises:
            StateNotFoundError: If no attempt is stored for ``key``
            InvalidStateError: If the stored entry is unusable
        """
        storage_key = f"{namespace}:{key}"
        raw = await storage.get(storage_key)
        if raw is None:
            raise StateNotFoundError(f"State {key} not found")

        try:
            entry = json.loads(raw)
        except ValueError as e:
            raise InvalidStateError("Invalid state entry") from e

        if entry is None:
            raise StateNotFoundError(f"State {key} not found")
        if not isinstance(entry, dict) or "state" not in entry or "config" not in entry:
            raise InvalidStateError(f"State {key} is invalid")

        config = _build(config_factory, entry["config"])
        flow_state = _build(state_factory, entry["state"])

        logger.debug(f"Resumed authorization attempt {storage_key}")
        return cls(config, flow_state, storage, namespace=namespace, **kwargs)

    def _serialize(self) -> str:
        return json.dumps(
            {"state": self.flow_state.to_dict(), "config": self.config.to_dict()}
        )


def _build(factory: Any, data: Any) -> Any:
    from_dict = getattr(factory, "from_dict", None)
    return from_dict(data) if from_dict is not None else factory(data)


def _error_body(error: ClientResponseError) -> Any:
    """Parsed JSON body of the rejected response, or None."""
    if error.response is None:
        return None
    try:
        return error.response.json()
    except ValueError:
        return None
