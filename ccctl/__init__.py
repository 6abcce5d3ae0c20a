"""ccctl - command-line client for the command center."""
