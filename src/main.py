"""
Main Entry Point for the Priority Matrix sync engine
Runs one engine session against a remote cards API, or a self-contained
two-participant demo on the in-memory store.
"""

__version__ = "1.0.0"

import argparse
import asyncio
import json
import logging
import sys

from config import ConfigError, config
from core.coordinates import DEFAULT_MATRIX_DIMENSIONS
from feed import ChangeFeedClient, FeedConfig
from models import ContainerSize, LogicalPosition, PixelPosition, Quadrant
from services.event_bus import EventBus, Events
from services.logger import cleanup_logging, setup_logging
from services.matrix_engine import MatrixEngine
from sources import HttpDurableStore, InMemoryDurableStore, LocalChangeFeed


class Application:
    """
    Main application controller
    Coordinates logging, configuration, the event bus and engine lifecycle
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self._initialized_components = []
        self.engines: list[MatrixEngine] = []
        self.event_bus = EventBus()

        try:
            # Initialize logging first
            self.logger = setup_logging({"console_level": args.log_level} if args.log_level else None)
            self._initialized_components.append("logging")
            self.logger.info("=" * 60)
            self.logger.info(f"Priority Matrix engine v{__version__}")
            self.logger.info("MODE: " + ("REMOTE" if args.remote else "IN-MEMORY DEMO"))
            self.logger.info("=" * 60)

            # Configure config runtime behavior at startup (avoid import-time side effects)
            config.set_logger(self.logger)
            config.ensure_directories()
            if args.config:
                config.load_from_file(args.config)
            config.validate()
            self.logger.info("Configuration validated successfully")

            self.event_bus.start()
            self._initialized_components.append("event_bus")
            self._setup_event_handlers()
        except Exception:
            self._emergency_cleanup()
            raise

    def _emergency_cleanup(self):
        """Clean up partially initialized components"""
        for component in reversed(self._initialized_components):
            if component == "event_bus":
                self.event_bus.stop()
            elif component == "logging":
                cleanup_logging()

    def _setup_event_handlers(self):
        """Log engine notifications"""
        self.event_bus.subscribe(Events.PROJECT_OPENED, self._log_event, weak=False)
        self.event_bus.subscribe(Events.PROJECT_RESYNCED, self._log_event, weak=False)
        self.event_bus.subscribe(Events.MUTATION_ROLLED_BACK, self._handle_rollback, weak=False)
        self.event_bus.subscribe(Events.MUTATION_LATE_SUCCESS, self._log_event, weak=False)
        self.event_bus.subscribe(Events.LOCK_DENIED, self._log_event, weak=False)
        self.event_bus.subscribe(Events.DRAG_REFUSED, self._log_event, weak=False)
        self.event_bus.subscribe(Events.FEED_DISCONNECTED, self._log_event, weak=False)
        self.logger.debug("Event handlers configured")

    def _log_event(self, event):
        self.logger.info(f"{event['name']}: {event.get('data')}")

    def _handle_rollback(self, event):
        data = event.get("data", {})
        self.logger.warning(f"Rolled back {data.get('entity_id')}: {data.get('error')}")

    def _engine(self, participant_id, durable, feed, publish_locks=None) -> MatrixEngine:
        if publish_locks is None:
            publish_locks = self.args.publish_locks
        engine = MatrixEngine(
            participant_id,
            durable,
            feed,
            event_bus=self.event_bus,
            publish_locks=publish_locks,
        )
        self.engines.append(engine)
        return engine

    def _print_board(self, engine: MatrixEngine):
        views = [view.to_dict() for view in engine.project_all(DEFAULT_MATRIX_DIMENSIONS)]
        print(json.dumps({"participant": engine.participant_id, "cards": views}, indent=2))

    async def run_remote(self):
        feed_config = FeedConfig()
        durable = HttpDurableStore(feed_config.api_url, token=feed_config.api_token)
        feed = ChangeFeedClient(feed_config)
        engine = self._engine(self.args.participant, durable, feed)

        await engine.open_project(self.args.project)
        self._print_board(engine)

        if self.args.watch > 0:
            self.logger.info(f"Watching project {self.args.project} for {self.args.watch}s")
            await asyncio.sleep(self.args.watch)
            self._print_board(engine)

    async def run_demo(self):
        """Two participants share one in-memory store and feed."""
        feed = LocalChangeFeed()
        await feed.connect()
        durable = InMemoryDurableStore(feed)
        # Locks are published so each participant sees the other's edits
        alice = self._engine("alice", durable, feed, publish_locks=True)
        bob = self._engine("bob", durable, feed, publish_locks=True)

        await alice.open_project(self.args.project)
        await bob.open_project(self.args.project)

        created = await alice.create_card("Ship beta", position=LogicalPosition(130, 130))
        card_id = created.card.id
        await alice.create_card("Rewrite docs", quadrant=Quadrant.BOTTOM_RIGHT)

        container = ContainerSize(1200, 1000)
        drag = await alice.drag_end(card_id, PixelPosition(100, 0), container)
        self.logger.info(f"alice drag: {drag.outcome.value} -> {drag.position}")

        lock = await bob.begin_edit(card_id)
        self.logger.info(f"bob edit lock granted: {lock.granted}")
        refused = alice.begin_drag(card_id)
        self.logger.info(f"alice drag while bob edits: {refused.outcome.value}")
        await bob.update_card(card_id, {"content": "Ship beta (scoped)"})
        await bob.end_edit(card_id)

        self._print_board(alice)
        self._print_board(bob)

    async def run(self):
        try:
            if self.args.remote:
                await self.run_remote()
            else:
                await self.run_demo()
        finally:
            for engine in self.engines:
                await engine.close()

    def shutdown(self):
        """Clean shutdown of application"""
        self.logger.info("Shutting down...")
        self.event_bus.wait_idle(timeout=2.0)
        self.logger.info(f"Event bus stats: {self.event_bus.get_stats()}")
        self.event_bus.stop()
        cleanup_logging()


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Priority Matrix positioning and sync engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # In-memory two-participant demo
  %(prog)s --remote --project p1 --watch 60 # Follow a project on the cards API

Remote mode reads MATRIX_API_URL, MATRIX_API_TOKEN and MATRIX_FEED_* from the environment.
        """,
    )
    parser.add_argument("--remote", action="store_true", help="Use the cards API and change feed")
    parser.add_argument("--project", default="demo-project", help="Project to open")
    parser.add_argument("--participant", default="cli", help="Participant id (remote mode)")
    parser.add_argument("--watch", type=float, default=0.0, help="Seconds to follow live changes")
    parser.add_argument("--publish-locks", action="store_true", help="Write edit locks to the store")
    parser.add_argument("--config", help="JSON config file with section overrides")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    app = None
    try:
        app = Application(args)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except ConfigError as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logging.critical(f"Unhandled exception: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if app is not None:
            app.shutdown()


if __name__ == "__main__":
    main()
