"""Real-time connection layer: registry, channels, dispatcher and liveness."""
