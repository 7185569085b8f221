"""Room state machine, join requests, typing metrics and round history."""
