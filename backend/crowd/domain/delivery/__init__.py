"""Push delivery: payload builders, gateway adapters and the dispatcher."""
