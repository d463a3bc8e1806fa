"""Command line tool for publishing charts to a Harbor registry."""
