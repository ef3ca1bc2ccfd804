"""Failure taxonomy for the sign-in flow.

Every error carries a stable ``code`` and a ``user_message`` that is safe to
show to the end user. The exception message itself holds the internal
detail and is only ever written to the server log.
"""

from __future__ import annotations


class SignInError(Exception):
    """Base class for all terminal failures of a sign-in attempt."""

    code = "signin_failed"
    user_message = "Sign-in failed. Please try again."
    retryable = False
    status_code = 400
    # Internal detail is logged with a traceback instead of a single line
    log_detail = False

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message


class StateInvalid(SignInError):
    code = "state_invalid"
    user_message = "Your sign-in link has expired or was already used. Please try logging in again."
    retryable = True


class StateNotFound(StateInvalid):
    pass


class StateExpired(StateInvalid):
    pass


class StateAlreadyConsumed(StateInvalid):
    pass


class ProviderError(SignInError):
    code = "provider_error"
    user_message = "We could not reach the sign-in provider. Please try again."
    retryable = True
    status_code = 502
    log_detail = True

    def __init__(self, detail: str | None = None, provider_error_code: str | None = None):
        super().__init__(detail)
        self.provider_error_code = provider_error_code


class TokenExchangeFailed(ProviderError):
    pass


class ProviderDenied(ProviderError):
    """The provider redirected back with an ``error`` parameter."""

    code = "provider_denied"
    user_message = "Sign-in was cancelled or denied by the provider."
    log_detail = False


class UnknownProvider(SignInError):
    """The login named a provider that is not configured or not enabled."""

    code = "provider_unknown"
    user_message = "That sign-in provider is not available."


class IdentityInvalid(SignInError):
    code = "identity_invalid"
    user_message = "We could not verify your identity. Please try logging in again."
    retryable = True
    status_code = 401


class InvalidIdentityToken(IdentityInvalid):
    pass


class TenantNotFound(SignInError):
    code = "tenant_not_found"
    user_message = "That organization does not exist."
    status_code = 404


class WorkspaceMismatch(SignInError):
    code = "workspace_mismatch"
    user_message = "You signed in with a workspace that is not connected to this organization."
    status_code = 403


class IdentityBoundToAnotherTenant(SignInError):
    code = "identity_bound_elsewhere"
    user_message = "Your account belongs to a different organization. Please contact your administrator."
    status_code = 409


class AccountInactive(SignInError):
    code = "account_inactive"
    user_message = "Your account has been deactivated. Please contact your administrator."
    status_code = 403


class AccountProvisioningFailed(SignInError):
    code = "provisioning_failed"
    user_message = "We could not set up your account. Please try again."
    retryable = True
    status_code = 500
    log_detail = True


class SlugAllocationFailed(AccountProvisioningFailed):
    pass


class SessionCommitFailed(SignInError):
    code = "session_failed"
    user_message = "We could not start your session. Please try again."
    retryable = True
    status_code = 503
    log_detail = True
