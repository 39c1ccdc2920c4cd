"""Discord gateway: client, slash commands and event handlers."""
