"""Game domain services: rooms, scoring and the leaderboard.

This package contains the domain logic imported by HTTP routes and socket
handlers, keeping transport concerns separated from the race mechanics.
"""
