"""
otpauth/core/container.py

Purpose: Wiring of the authentication services

- Builds the KV store, SMS gateway, directory and services from settings
- One instance per application, kept on app.state
"""

from dataclasses import dataclass
from typing import Optional

from otpauth.core.config import Settings, settings as default_settings
from otpauth.core.exceptions import ConfigurationError
from otpauth.core.logging import get_logger
from otpauth.db.kv_store import KeyValueStore, create_kv_store
from otpauth.db.mongo import get_identities_collection
from otpauth.flow.dispatcher import AuthFlow
from otpauth.services.identity_service import IdentityReconciliationService
from otpauth.services.otp_service import OtpSessionManager
from otpauth.services.sms_gateway import SmsGateway, create_sms_backend
from otpauth.services.token_service import TokenService
from otpauth.services.user_directory import InMemoryUserDirectory, MongoUserDirectory, UserDirectory
from otpauth.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    config: Settings
    kv: KeyValueStore
    gateway: SmsGateway
    directory: UserDirectory
    otp: OtpSessionManager
    identities: IdentityReconciliationService
    tokens: TokenService
    flow: AuthFlow

    async def close(self) -> None:
        await self.gateway.close()
        await self.kv.close()


def build_container(
    config: Settings = default_settings,
    clock: Clock = utc_now,
    kv: Optional[KeyValueStore] = None,
    gateway: Optional[SmsGateway] = None,
    directory: Optional[UserDirectory] = None,
) -> ServiceContainer:
    """
    Assembles the services. Anything passed in explicitly (tests, scripts)
    replaces the backend selected by configuration.

    Raises:
        ConfigurationError: the configured SMS backend has no credentials
    """
    if kv is None:
        kv = create_kv_store(
            config.REDIS_URL,
            clock=clock,
            lock_timeout=config.kv_lock_timeout,
            lock_blocking_timeout=config.KV_LOCK_BLOCKING_TIMEOUT_SECONDS,
        )

    if gateway is None:
        backend = create_sms_backend(config)
        if not backend.is_configured():
            raise ConfigurationError(details=f"SMS_BACKEND={config.SMS_BACKEND} is missing its credentials")
        gateway = SmsGateway(backend, timeout_seconds=config.SMS_DISPATCH_TIMEOUT_SECONDS)

    if directory is None:
        if config.USER_DIRECTORY_BACKEND == "mongo":
            directory = MongoUserDirectory(get_identities_collection(), clock=clock)
        else:
            logger.warning("Using in-memory user directory; identities are lost on restart")
            directory = InMemoryUserDirectory(clock=clock)

    otp = OtpSessionManager(kv, gateway, config=config, clock=clock)
    identities = IdentityReconciliationService(directory)
    tokens = TokenService(config=config, clock=clock)

    logger.info(
        f"Services ready: kv={kv.name}, sms={gateway.backend_name}, "
        f"directory={type(directory).__name__}"
    )

    return ServiceContainer(
        config=config,
        kv=kv,
        gateway=gateway,
        directory=directory,
        otp=otp,
        identities=identities,
        tokens=tokens,
        flow=AuthFlow(otp, identities, tokens),
    )
