"""
Connections Puzzle Server - Main Entry Point

This is the main entry point for the Connections puzzle server.
It initializes all services, seeds the puzzle store and starts the
Flask-SocketIO application.
"""

import threading
import time
from connections import create_app
from connections.config import Config, PUZZLE_CATALOGUE, get_puzzle_statistics, validate_puzzle_catalogue_integrity
from connections.services.store import PersistenceError, create_store
from connections.services.auth_service import initialize_auth_service
from connections.services.game_service import initialize_game_service, get_game_service
from connections.services.persistence_service import initialize_persistence_service, get_persistence_service
from connections.services.puzzle_service import initialize_puzzle_service
from connections.services.rotation_service import RotationClockError, initialize_rotation_clock, get_rotation_clock
from connections.utils.game_logger import game_logger


def session_cleanup_worker(app, interval_seconds: int):
    """
    Background worker that periodically clears stale instance guards, evicts
    finished or idle sessions and applies pending daily rotations.
    """
    print("Session cleanup worker started")
    while True:
        try:
            with app.app_context():
                persistence_service = get_persistence_service()
                game_service = get_game_service()
                rotation_clock = get_rotation_clock()

                if persistence_service:
                    cleanup_result = persistence_service.clear_stale_guards()

                    if cleanup_result["cleared_count"] > 0:
                        game_logger.logger.info(
                            f"Guard cleanup: cleared {cleanup_result['cleared_count']} stale instance guards"
                        )
                        if game_service:
                            dropped = game_service.drop_sessions(cleanup_result["accounts"])
                            for account_id in cleanup_result["accounts"]:
                                print(f"{account_id} - Session guard expired (missed heartbeat)")
                            game_logger.logger.info(f"Guard cleanup: dropped {dropped} in-memory sessions")

                if game_service:
                    evicted = game_service.evict_sessions(Config.INSTANCE_GUARD_TIMEOUT_SECONDS)
                    if evicted:
                        game_logger.logger.info(f"Session cleanup: evicted {len(evicted)} finished or idle sessions")

                if rotation_clock:
                    rotation_clock.increment_if_needed()

        except (PersistenceError, RotationClockError) as e:
            game_logger.logger.error(f"Error in session cleanup worker: {e}")

        time.sleep(interval_seconds)


def main():
    """Main function to initialize services and start the server."""
    try:
        # Initialize all services
        print("Initializing services...")

        validate_puzzle_catalogue_integrity()
        print(f"✓ Puzzle catalogue validated ({get_puzzle_statistics()['total_puzzles']} puzzles)")

        store = create_store(Config.MONGO_URI, Config.MONGO_DB_NAME)
        print(f"✓ Document store ready ({type(store).__name__})")

        puzzle_service = initialize_puzzle_service(store)
        seeded = puzzle_service.seed_catalogue(PUZZLE_CATALOGUE)
        print(f"✓ Puzzle service initialized ({seeded} puzzles seeded)")

        bounds = puzzle_service.puzzle_number_range()
        rotation_clock = initialize_rotation_clock(store, puzzle_service, Config.PUZZLE_TIMEZONE)
        rotation_clock.initialize(bounds[0], bounds[1])
        print(f"✓ Rotation clock initialized (today: puzzle {rotation_clock.increment_if_needed()})")

        persistence_service = initialize_persistence_service(store, Config.INSTANCE_GUARD_TIMEOUT_SECONDS)
        print("✓ Persistence service initialized")

        if Config.JWT_SECRET:
            auth_service = initialize_auth_service(persistence_service, Config.JWT_SECRET, Config.JWT_EXPIRATION_DAYS)
            print("✓ Authentication service initialized")
        else:
            print("✗ JWT Secret not configured")
            auth_service = None

        initialize_game_service(persistence_service, puzzle_service, rotation_clock)
        print("✓ Game service initialized")

        # Create Flask app
        print("Creating Flask application...")
        app, socketio = create_app(Config)
        print("✓ Flask application created successfully")

        # Start session cleanup worker in background thread
        cleanup_thread = threading.Thread(
            target=session_cleanup_worker, args=(app, Config.CLEANUP_INTERVAL_SECONDS), daemon=True
        )
        cleanup_thread.start()
        print(f"✓ Session cleanup worker started - checking every {Config.CLEANUP_INTERVAL_SECONDS} seconds")

        # Log server startup
        game_logger.logger.info("Connections Server Starting - logging, guest authentication and guard cleanup enabled")

        print(f"\nStarting Connections Puzzle Server on {Config.HOST}:{Config.PORT}")
        print(f"Debug mode: {Config.DEBUG}")
        print(f"Auth available: {auth_service is not None}")
        print("=" * 50)

        # Start the server
        socketio.run(app, host=Config.HOST, port=Config.PORT, debug=Config.DEBUG)

    except KeyboardInterrupt:
        print("\nServer shutting down...")
        game_logger.logger.info("Connections Server shutting down (KeyboardInterrupt)")
    except Exception as e:
        print(f"Error starting server: {e}")
        game_logger.logger.error(f"Error starting server: {e}")
        raise


if __name__ == '__main__':
    main()
