"""relayd: service wrapper (configuration, logging, CLI) around relay_store."""
