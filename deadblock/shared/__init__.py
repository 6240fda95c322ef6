"""Store-facing layer shared by the API server and player clients."""
