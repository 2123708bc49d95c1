"""Command line interface (entry point in __main__)."""
