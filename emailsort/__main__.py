import asyncio
import logging

from .api_client import EmailSortApiClient
from .config import get_settings
from .logging_setup import configure_logging
from .session_provider import SessionProvider, create_identity_client
from .state_machine import NavigationDirective, SessionState, SessionStateMachine

logger = logging.getLogger("emailsort.host")


def _log_directive(directive: NavigationDirective) -> None:
    logger.info("navigate path=%s replace=%s notice=%s", directive.path, directive.replace, directive.notice)


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "host_start api_url=%s site_url=%s refresh_s=%s collection_s=%s",
        settings.api_url, settings.site_url,
        settings.refresh_interval_s, settings.collection_interval_s,
    )

    client = await create_identity_client(settings)
    machine = SessionStateMachine(
        SessionProvider.from_supabase(client, settings),
        EmailSortApiClient(settings),
        settings=settings,
        navigate=_log_directive,
    )
    machine.add_snapshot_listener(
        lambda snap: logger.info("snapshot categories=%s emails=%s", len(snap.categories), snap.email_count)
    )
    await machine.start()
    await machine.wait_idle()
    if machine.state in (SessionState.ANONYMOUS, SessionState.REAUTH_REQUIRED):
        url = await machine.sign_in()
        logger.info("sign_in_url url=%s", url)

    try:
        await asyncio.Event().wait()
    finally:
        await machine.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
