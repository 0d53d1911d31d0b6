"""crabctl command line."""
