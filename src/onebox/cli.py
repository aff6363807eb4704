"""Command-line entry point for Onebox."""

from __future__ import annotations

import argparse
import logging
import threading
from pathlib import Path

from .core import (
    AccountRegistry,
    AppSettings,
    EventBus,
    ServiceContainer,
    configure_logging,
    load_app_settings,
)
from .ingestion import MessageParser, MessagePipeline
from .intelligence import KeywordCategoryService, LLMCategoryService, OllamaClient
from .notify import WebhookNotifier
from .storage import SqliteMessageRepository
from .sync import (
    ConnectionManager,
    FetchEngine,
    LifecycleController,
    SyncStateTracker,
    imap_session_factory,
)

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Onebox multi-account mail sync")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "run", "serve"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address for the serve command (default: from settings).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the serve command (default: from settings).",
    )
    return parser


def build_container(settings: AppSettings) -> ServiceContainer:
    """Register the runtime object graph for ``settings``."""
    container = ServiceContainer()
    container.register("settings", lambda _c: settings)
    container.register("registry", lambda _c: AccountRegistry.from_settings(settings))
    container.register("events", lambda _c: EventBus())
    container.register(
        "tracker",
        lambda c: SyncStateTracker(c.resolve("registry").ids(), c.resolve("events")),
    )
    container.register(
        "connections",
        lambda c: ConnectionManager(
            c.resolve("registry"),
            c.resolve("tracker"),
            imap_session_factory(settings.sync),
        ),
    )
    container.register(
        "engine",
        lambda c: FetchEngine(
            MessageParser(), c.resolve("tracker"), c.resolve("events"), settings.sync
        ),
    )
    container.register(
        "controller",
        lambda c: LifecycleController(
            c.resolve("registry"),
            c.resolve("connections"),
            c.resolve("engine"),
            c.resolve("tracker"),
            settings.sync,
        ),
    )
    container.register("repository", lambda _c: SqliteMessageRepository(settings.storage))
    container.register("category_service", lambda _c: _build_category_service(settings))
    container.register("notifier", lambda _c: WebhookNotifier(settings.notifications))
    container.register(
        "pipeline",
        lambda c: MessagePipeline(
            c.resolve("repository"),
            c.resolve("category_service"),
            c.resolve("notifier"),
        ),
    )
    return container


def execute(args: argparse.Namespace, settings: AppSettings) -> None:
    """Execute the requested CLI command."""
    command = args.command
    if command == "info":
        _print_info(settings)
    elif command == "run":
        _run(settings)
    elif command == "serve":
        _serve(settings, host=args.host, port=args.port)


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    execute(args, settings)


def _build_category_service(settings: AppSettings) -> KeywordCategoryService | LLMCategoryService:
    keyword_service = KeywordCategoryService()
    if settings.llm.base_url and settings.llm.model:
        return LLMCategoryService(OllamaClient(settings.llm), fallback=keyword_service)
    return keyword_service


def _print_info(settings: AppSettings) -> None:
    print(f"Configured accounts: {len(settings.accounts)}")
    for account in settings.accounts:
        transport = "SSL" if account.use_ssl else "plain"
        print(f"  {account.id}: {account.user} @ {account.host}:{account.port} ({transport})")
    print(f"Mailbox: {settings.sync.mailbox}")
    print(f"Database path: {settings.storage.db_path}")
    llm = settings.llm.base_url or "disabled (keyword rules only)"
    print(f"LLM: {llm}")


def _start(container: ServiceContainer) -> LifecycleController:
    pipeline: MessagePipeline = container.resolve("pipeline")
    events: EventBus = container.resolve("events")
    pipeline.attach(events.message_received)
    controller: LifecycleController = container.resolve("controller")
    controller.start()
    return controller


def _stop(container: ServiceContainer) -> None:
    """Release every created service, most recently created first."""
    for key, instance in container.resolved():
        if key == "controller":
            instance.shutdown()
        elif key == "events":
            instance.flush()
            instance.close()
        elif key in ("repository", "notifier"):
            instance.close()


def _run(settings: AppSettings) -> None:
    """Synchronize every account until interrupted."""
    if not settings.accounts:
        print("No accounts configured; set ONEBOX_ACCOUNTS__0__HOST and friends.")
        return
    container = build_container(settings)
    controller = _start(container)
    try:
        for status in controller.connect_all():
            state = "connected" if status.connected else f"failed: {status.error}"
            print(f"{status.account_id}: {state}")
        threading.Event().wait()
    except KeyboardInterrupt:
        print("Shutting down...")
    finally:
        _stop(container)


def _serve(settings: AppSettings, *, host: str | None, port: int | None) -> None:
    """Run the management API with synchronization in the background."""
    import uvicorn  # pylint: disable=import-outside-toplevel

    from .web import create_app  # pylint: disable=import-outside-toplevel

    container = build_container(settings)
    controller = _start(container)
    app = create_app(
        controller,
        repository=container.resolve("repository"),
        notifier=container.resolve("notifier"),
        on_shutdown=[lambda: _stop(container)],
    )
    threading.Thread(
        target=controller.connect_all, name="onebox-connect", daemon=True
    ).start()
    uvicorn.run(
        app,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
