"""Score ledger, leaderboard index and deferred score updates."""
