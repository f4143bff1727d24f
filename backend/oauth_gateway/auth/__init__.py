"""Login flow: state codec, provider adapters and routes."""
