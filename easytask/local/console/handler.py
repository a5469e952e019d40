def print_help() -> None:
    """Prints the command help text."""
    print("\nAvailable commands:")
    print("  start                  - Start all registered tasks.")
    print("  status                 - Show the liveness of the master and every worker.")
    print("  stop [--force]         - Stop gracefully, or kill immediately with --force.")
    print("  help                   - Show this help message.")
    print()
